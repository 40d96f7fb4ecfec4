"""Delivery channels consumed by the loan notification dispatcher."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.settings import settings
from app.services.notifications import inbox

logger = logging.getLogger(__name__)

PUSH = "PUSH"


@dataclass
class NotificationResult:
    """Result of a notification send operation."""

    success: bool
    channel_type: str
    recipient_id: UUID | None = None
    sent: int = 0
    error_message: str | None = None


class NotificationChannel(ABC):
    channel_type: str = ""

    def supports(self, kind: str) -> bool:
        return self.channel_type == kind

    @abstractmethod
    async def send(
        self, user_id: UUID, title: str, body: str, data: dict[str, Any]
    ) -> NotificationResult:
        """Deliver one message to one user. Must report failure rather than raise."""


class PushNotificationChannel(NotificationChannel):
    """Firebase Cloud Messaging (legacy HTTP API) to every active device of the recipient."""

    channel_type = PUSH

    def __init__(
        self,
        db: AsyncSession,
        *,
        server_key: str | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.db = db
        self.server_key = server_key if server_key is not None else settings.fcm_server_key
        self.endpoint = endpoint or settings.fcm_endpoint
        self.timeout = timeout if timeout is not None else settings.push_timeout_seconds
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.server_key)

    async def send(
        self, user_id: UUID, title: str, body: str, data: dict[str, Any]
    ) -> NotificationResult:
        if not self.enabled:
            return NotificationResult(
                success=False,
                channel_type=self.channel_type,
                recipient_id=user_id,
                error_message="FCM server key is not configured",
            )
        try:
            tokens = await inbox.active_device_tokens(self.db, user_id)
        except Exception as exc:
            logger.warning("Could not load push devices for user %s: %s", user_id, exc)
            return NotificationResult(
                success=False, channel_type=self.channel_type, recipient_id=user_id, error_message=str(exc)
            )
        if not tokens:
            return NotificationResult(
                success=False,
                channel_type=self.channel_type,
                recipient_id=user_id,
                error_message="Recipient has no active push devices",
            )

        sent = 0
        errors: list[str] = []
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for token in tokens:
                try:
                    await self._send_fcm(client, token, title, body, data)
                    sent += 1
                except (httpx.HTTPError, ValueError) as exc:
                    errors.append(str(exc))
                    logger.warning("Push to user %s failed: %s", user_id, exc)
        return NotificationResult(
            success=sent > 0,
            channel_type=self.channel_type,
            recipient_id=user_id,
            sent=sent,
            error_message="; ".join(errors) or None,
        )

    async def _send_fcm(
        self, client: httpx.AsyncClient, token: str, title: str, body: str, data: dict[str, Any]
    ) -> None:
        headers = {
            "Authorization": f"key={self.server_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "to": token,
            "notification": {"title": title, "body": body[:1024]},
            # FCM data values must be strings.
            "data": {key: "" if value is None else str(value) for key, value in data.items()},
        }
        response = await client.post(self.endpoint, headers=headers, json=payload)
        response.raise_for_status()
        response_data = response.json()
        if response_data.get("success") != 1:
            results = response_data.get("results") or [{}]
            raise ValueError(results[0].get("error", "Unknown FCM error"))
