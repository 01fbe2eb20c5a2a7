"""
Email ticket routing.

Tickets created from inbound email land in the staging group. The customer's
Zammad profile note carries "Region: <value>"; the ticket is moved to that
region's group and auto-assigned. Without a valid region the ticket stays in
staging and every active admin is alerted.
"""

import asyncio
import hashlib
import hmac
import logging
import re
from typing import Optional, Protocol

from ticket_dispatch.errors import ZammadError
from ticket_dispatch.models import (
    Agent,
    AssignmentResult,
    EmailRoutingOutcome,
    Region,
    Ticket,
    ZammadWebhookPayload,
)
from ticket_dispatch.regions import STAGING_GROUP_ID, get_group_id_by_region, is_valid_region
from ticket_dispatch.services.notifications import (
    AdminDirectory,
    Notifier,
    alert_admins,
    handle_assignment_notification,
)

logger = logging.getLogger(__name__)

UNROUTED_ALERT_TITLE = "Email ticket not routed"

_REGION_NOTE = re.compile(r"Region:\s*(\S+)", re.IGNORECASE)


class RoutingBackend(Protocol):
    def get_user(self, user_id: int) -> Agent: ...

    def update_ticket(self, ticket_id: int, data: dict) -> object: ...


def parse_region_from_note(note: Optional[str]) -> tuple[Optional[str], Optional[Region]]:
    """(raw value, region) from a 'Region: <value>' line. Region is None when missing or not a known region."""
    if not note:
        return None, None
    match = _REGION_NOTE.search(note)
    if not match:
        return None, None
    raw = match.group(1).strip()
    return raw, Region(raw) if is_valid_region(raw) else None


def verify_webhook_signature(body: bytes, signature: str, secret: str) -> bool:
    """X-Zammad-Signature is the hex HMAC-SHA256 of the raw body."""
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def is_staged_email_ticket(payload: ZammadWebhookPayload) -> bool:
    return (
        payload.ticket.group_id == STAGING_GROUP_ID
        and payload.article is not None
        and payload.article.type == "email"
    )


async def _alert_unrouted(
    ticket: Ticket,
    customer_email: Optional[str],
    reason: str,
    notifier: Notifier,
    directory: AdminDirectory,
) -> None:
    lines = [f"Ticket #{ticket.number}" if ticket.number else f"Ticket id {ticket.id}"]
    if customer_email:
        lines.append(f"Customer email: {customer_email}")
    lines.append(f"Reason: {reason}")
    data = {
        "ticketId": ticket.id,
        "ticketNumber": ticket.number,
        "ticketTitle": ticket.title,
        "customerEmail": customer_email,
        "reason": reason,
    }
    await alert_admins(UNROUTED_ALERT_TITLE, "\n".join(lines), data, notifier, directory)


async def route_staged_email_ticket(
    payload: ZammadWebhookPayload,
    backend: RoutingBackend,
    assigner,
    notifier: Notifier,
    directory: AdminDirectory,
) -> EmailRoutingOutcome:
    """
    Move a staged email ticket to its customer's region group, then auto-assign
    and notify. Never raises for backend failures; the outcome says what happened.
    """
    ticket = payload.ticket
    if not is_staged_email_ticket(payload):
        return EmailRoutingOutcome(ticket_id=ticket.id, status="skipped", reason="Not a staged email ticket")
    if ticket.customer_id is None:
        logger.warning("Email ticket %s has no customer_id; not routed.", ticket.id)
        return EmailRoutingOutcome(ticket_id=ticket.id, status="skipped", reason="Missing customer_id")

    try:
        customer = await asyncio.to_thread(backend.get_user, ticket.customer_id)
    except ZammadError as e:
        logger.error("Could not fetch customer %s for ticket %s: %s", ticket.customer_id, ticket.id, e.detail)
        return EmailRoutingOutcome(ticket_id=ticket.id, status="failed", reason=e.detail)

    raw, region = parse_region_from_note(customer.note)
    if region is None:
        reason = f"Invalid region value: {raw}" if raw else "Customer has no region set"
        logger.warning("Email ticket #%s left in staging: %s", ticket.number, reason)
        await _alert_unrouted(ticket, customer.email or None, reason, notifier, directory)
        return EmailRoutingOutcome(ticket_id=ticket.id, status="unrouted", reason=reason)

    group_id = get_group_id_by_region(region)
    try:
        await asyncio.to_thread(backend.update_ticket, ticket.id, {"group_id": group_id})
    except ZammadError as e:
        logger.error("Could not move ticket %s to group %s: %s", ticket.id, group_id, e.detail)
        return EmailRoutingOutcome(ticket_id=ticket.id, status="failed", region=region, reason=e.detail)
    logger.info("Email ticket #%s routed to %s (group %s).", ticket.number, region.value, group_id)

    try:
        result = await assigner.auto_assign_single_ticket(ticket.id, ticket.number, ticket.title, group_id)
    except Exception as e:
        logger.exception("Auto-assign failed for routed ticket #%s: %s", ticket.number, e)
        result = AssignmentResult(success=False, error=str(e) or type(e).__name__)
    await handle_assignment_notification(
        result, ticket.id, ticket.number, ticket.title, region.value,
        notifier=notifier, directory=directory,
    )
    return EmailRoutingOutcome(ticket_id=ticket.id, status="routed", region=region, result=result)
