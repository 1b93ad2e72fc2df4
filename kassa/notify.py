"""
Best-effort order notifications (confirmation mail etc. live behind
NOTIFY_URL). A failed delivery is logged and never undoes a transition.
"""
from typing import Any, Dict

import httpx

from . import config
from .infra.logs import get_logger

logger = get_logger("notify")

SECRET_HEADER = "x-internal-secret"


async def send_order_event(
    http: httpx.AsyncClient, event_type: str, order: Dict[str, Any],
) -> bool:
    if not config.NOTIFY_URL:
        logger.debug("notification_skipped", event_type=event_type,
                     order_number=order.get("order_number"))
        return False
    try:
        resp = await http.post(
            config.NOTIFY_URL,
            json={"type": event_type, "order": order},
            headers={SECRET_HEADER: config.INTERNAL_FUNCTION_SECRET},
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning(
            "notification_failed",
            event_type=event_type,
            order_number=order.get("order_number"),
            error=str(e),
        )
        return False
    logger.info("notification_sent", event_type=event_type,
                order_number=order.get("order_number"))
    return True
