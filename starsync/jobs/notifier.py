"""Best-effort webhook delivery of terminal job states."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from starsync.config.settings import settings
from starsync.crawlers.stars.client import sanitize_log_extra

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """POSTs one JSON payload per call; a failed delivery is logged, never raised."""

    def __init__(
        self,
        *,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout_seconds = settings.STAR_NOTIFY_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self._transport = transport

    async def notify(self, endpoint: str, status: Any) -> bool:
        payload = status.notification_payload()
        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
                resp = await client.post(
                    endpoint,
                    json=payload,
                    headers={"User-Agent": settings.USER_AGENT},
                )
                resp.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.warning(
                "Failed to deliver job notification",
                extra=sanitize_log_extra(endpoint=endpoint, job_id=payload["job_id"], error=str(exc)),
            )
            return False

        logger.info(
            "Delivered job notification",
            extra=sanitize_log_extra(endpoint=endpoint, job_id=payload["job_id"], final_state=payload["final_state"]),
        )
        return True
