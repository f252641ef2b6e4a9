from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from functools import lru_cache

import httpx

from alumni_api.core.config import get_settings
from alumni_api.services.records import MemberRecord

logger = logging.getLogger(__name__)

MEMBER_APPROVED = "member_approved"
MEMBER_REJECTED = "member_rejected"


class Notifier(ABC):
    """Fire-and-forget delivery of membership decisions.

    ``notify`` schedules delivery on the running loop and returns at once;
    delivery errors are logged and never reach the caller.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def notify(self, member: MemberRecord, event: str, reason: str | None = None) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("no running loop; dropping notification member_id=%s event=%s", member.id, event)
            return
        task = loop.create_task(self._deliver_safely(member, event, reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @abstractmethod
    async def deliver(self, member: MemberRecord, event: str, reason: str | None) -> None:
        """Send one notification. Errors propagate to ``_deliver_safely``."""

    async def _deliver_safely(self, member: MemberRecord, event: str, reason: str | None) -> None:
        try:
            await self.deliver(member, event, reason)
        except Exception:
            logger.exception("member notification failed member_id=%s event=%s", member.id, event)


class LoggingNotifier(Notifier):
    async def deliver(self, member: MemberRecord, event: str, reason: str | None) -> None:
        logger.info(
            "member notification event=%s member_id=%s email=%s reason=%s",
            event,
            member.id,
            member.email,
            reason,
        )


class WebhookNotifier(Notifier):
    def __init__(self, url: str, *, timeout_seconds: float = 5.0) -> None:
        super().__init__()
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def deliver(self, member: MemberRecord, event: str, reason: str | None) -> None:
        payload = {
            "event": event,
            "member": {
                "id": member.id,
                "email": member.email,
                "display_name": member.display_name,
                "approval_state": member.approval_state,
            },
            "reason": reason,
        }
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(self.url, json=payload)
            response.raise_for_status()


@lru_cache
def get_notifier() -> Notifier:
    settings = get_settings()
    if settings.notifier_webhook_url:
        return WebhookNotifier(settings.notifier_webhook_url, timeout_seconds=settings.notifier_timeout_seconds)
    return LoggingNotifier()
