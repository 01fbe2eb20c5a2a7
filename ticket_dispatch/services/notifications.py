"""
Notification fan-out after an auto-assignment attempt.

Success: the assigned agent's local accounts get "ticket assigned".
Failure: every active Zammad admin gets a system alert with the ticket and error.
Every send is best-effort; nothing here changes the AssignmentResult or raises.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Protocol

from ticket_dispatch.models import Agent, AssignmentResult, DeliveryOutcome
from ticket_dispatch.services.ticket_states import ADMIN_ROLE_ID

logger = logging.getLogger(__name__)

ADMIN_SEARCH_QUERY = f"role_ids:{ADMIN_ROLE_ID} AND active:true"


class Notifier(Protocol):
    async def notify_ticket_assigned(
        self,
        recipient_user_id: str,
        ticket_id: int,
        ticket_number: Optional[str] = None,
        ticket_title: Optional[str] = None,
    ) -> None: ...

    async def notify_system_alert(
        self,
        recipient_user_id: str,
        title: str,
        body: str,
        data: Optional[dict[str, Any]] = None,
    ) -> None: ...

    async def resolve_local_user_ids(self, zammad_user_id: int) -> list[str]: ...


class AdminDirectory(Protocol):
    def search_users(self, query: str) -> list[Agent]: ...


async def deliver_best_effort(
    recipients: Iterable[str],
    send: Callable[[str], Awaitable[None]],
) -> list[DeliveryOutcome]:
    """Call send(recipient) for each recipient in order; log and record failures, never raise."""
    outcomes: list[DeliveryOutcome] = []
    for recipient in recipients:
        try:
            await send(recipient)
        except Exception as e:
            logger.warning("Notification to %s failed: %s", recipient, e)
            outcomes.append(DeliveryOutcome(recipient_id=recipient, delivered=False, error=str(e)))
        else:
            outcomes.append(DeliveryOutcome(recipient_id=recipient, delivered=True))
    return outcomes


async def _resolve_recipients(notifier: Notifier, zammad_user_ids: Iterable[int]) -> list[str]:
    """Flatten local ids for several Zammad users; unresolvable users are skipped."""
    recipients: list[str] = []
    for zammad_id in zammad_user_ids:
        try:
            ids = await notifier.resolve_local_user_ids(zammad_id)
        except Exception as e:
            logger.warning("Could not resolve local users for Zammad user %s: %s", zammad_id, e)
            continue
        recipients.extend(i for i in ids if i not in recipients)
    return recipients


async def _active_admin_ids(directory: AdminDirectory) -> list[int]:
    admins = await asyncio.to_thread(directory.search_users, ADMIN_SEARCH_QUERY)
    return [a.id for a in admins if a.active and ADMIN_ROLE_ID in a.role_ids]


async def alert_admins(
    title: str,
    body: str,
    data: dict[str, Any],
    notifier: Notifier,
    directory: AdminDirectory,
) -> list[DeliveryOutcome]:
    """System alert to every active admin's local accounts. An admin lookup failure is logged and sends nothing."""
    try:
        admin_ids = await _active_admin_ids(directory)
    except Exception as e:
        logger.error("Could not look up admins for alert %r: %s", title, e)
        return []
    recipients = await _resolve_recipients(notifier, admin_ids)

    async def send_alert(recipient: str) -> None:
        await notifier.notify_system_alert(recipient_user_id=recipient, title=title, body=body, data=data)

    outcomes = await deliver_best_effort(recipients, send_alert)
    logger.warning("Alert %r sent to %d/%d admin recipients.",
                   title, sum(o.delivered for o in outcomes), len(outcomes))
    return outcomes


async def handle_assignment_notification(
    result: AssignmentResult,
    ticket_id: int,
    ticket_number: str,
    ticket_title: str,
    region: str,
    notifier: Optional[Notifier] = None,
    directory: Optional[AdminDirectory] = None,
) -> list[DeliveryOutcome]:
    """
    Send the notification matching `result`; returns one outcome per attempted recipient.
    Defaults to the webhook notifier and the configured Zammad client.
    """
    if notifier is None:
        from ticket_dispatch.webhook import WebhookNotifier
        notifier = WebhookNotifier()
    if directory is None:
        from ticket_dispatch.services.zammad_client import get_zammad_client
        directory = get_zammad_client()
    if result.success:
        if result.assigned_to is None:
            logger.warning("Ticket #%s marked assigned without an assignee; nothing to notify.", ticket_number)
            return []
        recipients = await _resolve_recipients(notifier, [result.assigned_to.id])

        async def send_assigned(recipient: str) -> None:
            await notifier.notify_ticket_assigned(
                recipient_user_id=recipient,
                ticket_id=ticket_id,
                ticket_number=ticket_number,
                ticket_title=ticket_title,
            )

        outcomes = await deliver_best_effort(recipients, send_assigned)
        logger.info("Ticket #%s: assignment notice sent to %d/%d recipients.",
                    ticket_number, sum(o.delivered for o in outcomes), len(outcomes))
        return outcomes

    error = result.error or "Unknown error"
    title = "Ticket auto-assignment failed"
    body = f"Ticket #{ticket_number} ({ticket_title}) in region {region} could not be assigned: {error}"
    data = {
        "ticketId": ticket_id,
        "ticketNumber": ticket_number,
        "ticketTitle": ticket_title,
        "region": region,
        "error": error,
    }
    return await alert_admins(title, body, data, notifier, directory)
