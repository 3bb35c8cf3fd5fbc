from __future__ import annotations

import logging
from typing import Any

import httpx
from sqlalchemy import text
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = {"new_customer", "new_sale"}


def active_webhook_urls(db: Session, event: str) -> list[str]:
    rows = db.execute(
        text(
            """
            SELECT url
            FROM webhooks
            WHERE event = :event
              AND active = TRUE
            ORDER BY id
            """
        ),
        {"event": event},
    ).scalars().all()
    return [str(url) for url in rows]


def deliver(urls: list[str], payload: dict[str, Any], timeout: float = 5.0) -> int:
    """POST ``payload`` to every URL once. Failures are logged and dropped.

    Returns how many endpoints answered with a 2xx status.
    """
    delivered = 0
    for url in urls:
        try:
            response = httpx.post(url, json=payload, timeout=timeout)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Webhook delivery to %s failed: %s", url, exc)
            continue
        delivered += 1
    if urls:
        logger.info("Delivered %s event to %s of %s webhooks", payload.get("event"), delivered, len(urls))
    return delivered
