import os
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import redis.asyncio as redis

BACKEND = os.getenv("WEBHOOK_GATE_BACKEND", "pg").lower()  # 'pg' | 'redis'

if BACKEND == "redis":
    from ._redis import EventGate as _EventGate
else:
    from ._postgres import EventGate as _EventGate


# Factory keeps server.py simple and constructor-agnostic:
def new_gate(*, db: Optional[AsyncSession] = None,
             r: Optional[redis.Redis] = None,
             ttl_seconds: int = 7 * 24 * 3600):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError("EventGate(redis) requires r=redis.Redis")
        return _EventGate(r=r, ttl_seconds=ttl_seconds)
    if db is None:
        raise RuntimeError("EventGate(pg) requires db=AsyncSession")
    return _EventGate(db=db)


EventGate = _EventGate
__all__ = ["EventGate", "new_gate", "BACKEND"]
