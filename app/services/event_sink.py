"""
Side channel to the realtime messaging collaborator (chat / socket server).

Called by routers only after the request transaction committed. Publishing is
best-effort: failures are logged and never reach the caller or the database.
"""
import logging
from dataclasses import dataclass

import httpx

from app.config import NOTIFY_SECRET, NOTIFY_TIMEOUT_SECONDS, NOTIFY_URL

logger = logging.getLogger(__name__)

EVENT_DISTRIBUTED = "resource.distributed"
EVENT_RETURN_REQUESTED = "resource.return_requested"


@dataclass(frozen=True)
class CustodyNotification:
    event: str
    resource_id: int
    assignment_id: int
    actor_id: int

    def to_payload(self) -> dict:
        return {
            "event": self.event,
            "resourceId": self.resource_id,
            "assignmentId": self.assignment_id,
            "actorId": self.actor_id,
        }


class EventSink:
    async def publish(self, notification: CustodyNotification) -> None:
        raise NotImplementedError


class NullEventSink(EventSink):
    """Used when no NOTIFY_URL is configured."""

    async def publish(self, notification: CustodyNotification) -> None:
        logger.debug("notify_skipped event=%s assignment_id=%s", notification.event, notification.assignment_id)


class HttpEventSink(EventSink):
    """POSTs the notification as JSON to the internal notify endpoint."""

    def __init__(self, url: str, secret: str = "", timeout: float = NOTIFY_TIMEOUT_SECONDS, transport=None):
        self.url = url
        self.secret = secret
        self.timeout = timeout
        # httpx transport override (tests use httpx.MockTransport)
        self.transport = transport

    async def publish(self, notification: CustodyNotification) -> None:
        headers = {"x-internal-secret": self.secret} if self.secret else {}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(self.url, json=notification.to_payload(), headers=headers)
            if not resp.is_success:
                logger.warning(
                    "notify_failed event=%s assignment_id=%s status=%s",
                    notification.event, notification.assignment_id, resp.status_code,
                )
                return
            logger.info("notify_sent event=%s assignment_id=%s", notification.event, notification.assignment_id)
        except Exception as e:
            logger.warning(
                "notify_failed event=%s assignment_id=%s error=%s",
                notification.event, notification.assignment_id, e,
            )


def get_event_sink() -> EventSink:
    """FastAPI dependency; overridden in tests with a recording sink."""
    if NOTIFY_URL:
        return HttpEventSink(NOTIFY_URL, NOTIFY_SECRET)
    return NullEventSink()
