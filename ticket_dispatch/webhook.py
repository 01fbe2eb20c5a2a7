"""
In-app notification delivery over a webhook.

POSTs one JSON document per recipient to WEBHOOK_URL; the portal's notification
service stores it and pushes it to the user. No-op (logged) if WEBHOOK_URL is unset.
Send errors propagate: the caller decides whether they are fatal.
"""

import asyncio
import json
import logging
import ssl
import urllib.request
from typing import Any, Optional

from ticket_dispatch.config import WEBHOOK_URL
from ticket_dispatch.services.user_mapping import resolve_local_user_ids_for_zammad_user_id

logger = logging.getLogger(__name__)


def _ticket_number(ticket_number: Optional[str], ticket_id: int) -> str:
    return ticket_number or str(ticket_id)


def build_ticket_assigned_payload(
    recipient_user_id: str,
    ticket_id: int,
    ticket_number: Optional[str],
    ticket_title: Optional[str],
) -> dict[str, Any]:
    number = _ticket_number(ticket_number, ticket_id)
    return {
        "userId": recipient_user_id,
        "type": "ticket_assigned",
        "title": "A ticket was assigned to you",
        "body": f"#{number} - {ticket_title or ''}".strip(" -"),
        "data": {"ticketId": ticket_id, "ticketNumber": number, "ticketTitle": ticket_title},
    }


def build_system_alert_payload(
    recipient_user_id: str,
    title: str,
    body: str,
    data: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    return {
        "userId": recipient_user_id,
        "type": "system_alert",
        "title": title,
        "body": body,
        "data": data or {},
    }


def _do_post(url: str, payload: dict[str, Any]) -> None:
    """Synchronous POST (run in thread)."""
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST",
    )
    ctx = ssl.create_default_context()
    with urllib.request.urlopen(req, timeout=5, context=ctx):
        pass


class WebhookNotifier:
    """Default notification sender used by the worker."""

    def __init__(self, url: str = WEBHOOK_URL):
        self.url = url

    async def _send(self, payload: dict[str, Any]) -> None:
        if not self.url:
            logger.info("WEBHOOK_URL not set; %s notification for %s not delivered.",
                        payload["type"], payload["userId"])
            return
        await asyncio.to_thread(_do_post, self.url, payload)

    async def notify_ticket_assigned(
        self,
        recipient_user_id: str,
        ticket_id: int,
        ticket_number: Optional[str] = None,
        ticket_title: Optional[str] = None,
    ) -> None:
        await self._send(build_ticket_assigned_payload(recipient_user_id, ticket_id, ticket_number, ticket_title))

    async def notify_system_alert(
        self,
        recipient_user_id: str,
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None:
        await self._send(build_system_alert_payload(recipient_user_id, title, body, data))

    async def resolve_local_user_ids(self, zammad_user_id: int) -> list[str]:
        return await asyncio.to_thread(resolve_local_user_ids_for_zammad_user_id, zammad_user_id)
