from __future__ import annotations
from typing import Optional
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ...helpers import now_ts


class EventGate:
    """Provider event ids already processed, in the orders database.

    Runs inside the caller's transaction, so the gate row commits (or rolls
    back) together with the status change it protects.
    """

    def __init__(self, *, db: AsyncSession) -> None:
        self.db = db

    async def mark_event_seen(self, evt_id: Optional[str]) -> bool:
        # True -> first time we see it
        if not evt_id:
            return True
        row = (await self.db.execute(text("""
          INSERT INTO webhook_events_seen(idempotency_key, created_at)
          VALUES(:k, :ts)
          ON CONFLICT (idempotency_key) DO NOTHING
          RETURNING idempotency_key
        """), {"k": evt_id, "ts": now_ts()})).first()
        return row is not None
