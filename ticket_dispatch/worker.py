"""
ARQ background worker: auto-assign freshly created tickets, then notify.
Email tickets are routed out of the staging group first.
An hourly cron sweeps tickets that are still unassigned.
"""

import logging
from dataclasses import replace

from arq import cron, run_worker
from arq.connections import RedisSettings

from ticket_dispatch.config import AUTO_ASSIGN_SWEEP_ENABLED, LOG_LEVEL, REDIS_CONN_TIMEOUT, REDIS_URL
from ticket_dispatch.errors import DispatchConflictError
from ticket_dispatch.models import AssignmentResult, TicketDispatchRequest, ZammadWebhookPayload
from ticket_dispatch.regions import region_label
from ticket_dispatch.services.auto_assign import AutoAssigner
from ticket_dispatch.services.email_routing import route_staged_email_ticket
from ticket_dispatch.services.notifications import handle_assignment_notification
from ticket_dispatch.services.zammad_client import get_zammad_client
from ticket_dispatch.webhook import WebhookNotifier

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:
    client = get_zammad_client()
    ctx["backend"] = client
    ctx["assigner"] = AutoAssigner(client)
    ctx["directory"] = client
    ctx["notifier"] = WebhookNotifier()
    if not client.is_configured():
        logger.warning("Zammad is not configured; dispatch jobs will fail and alert admins.")


async def auto_assign_ticket(ctx: dict, payload: dict) -> dict:
    """
    ARQ job: assign the ticket, then send exactly one round of notifications.
    A ticket that is no longer new and unowned in its group is skipped untouched.
    Backend errors are treated like "no eligible agent" so ticket creation never
    depends on dispatch; the original message is kept for the admin alert.
    """
    request = TicketDispatchRequest.model_validate(payload)
    region = request.region.value if request.region else region_label(request.group_id)
    logger.info("Dispatching ticket #%s (group=%s, region=%s)...", request.ticket_number, request.group_id, region)
    try:
        await ctx["assigner"].check_dispatchable(request.ticket_id, request.group_id)
        result = await ctx["assigner"].auto_assign_single_ticket(
            request.ticket_id, request.ticket_number, request.ticket_title, request.group_id,
        )
    except DispatchConflictError as e:
        logger.info("Ticket #%s not dispatched: %s", request.ticket_number, e.detail)
        return {"result": None, "skipped": e.detail, "notifications": []}
    except Exception as e:
        logger.exception("Auto-assign failed for ticket #%s: %s", request.ticket_number, e)
        result = AssignmentResult(success=False, error=str(e) or type(e).__name__)

    if result.success:
        logger.info("Ticket #%s assigned to %s.", request.ticket_number, result.assigned_to.name)
    else:
        logger.warning("Auto-assign failed for #%s: %s", request.ticket_number, result.error)

    outcomes = await handle_assignment_notification(
        result,
        request.ticket_id,
        request.ticket_number,
        request.ticket_title,
        region,
        notifier=ctx["notifier"],
        directory=ctx["directory"],
    )
    return {
        "result": result.model_dump(),
        "notifications": [o.model_dump() for o in outcomes],
    }


async def route_email_ticket(ctx: dict, payload: dict) -> dict:
    """ARQ job: route a staged email ticket to its customer's region, then assign."""
    outcome = await route_staged_email_ticket(
        ZammadWebhookPayload.model_validate(payload),
        ctx["backend"],
        ctx["assigner"],
        ctx["notifier"],
        ctx["directory"],
    )
    logger.info("Email ticket %s: %s (%s)", outcome.ticket_id, outcome.status, outcome.reason or outcome.region)
    return outcome.model_dump(mode="json")


async def sweep_unassigned_tickets(ctx: dict) -> dict:
    """ARQ cron job: assign every ticket still waiting for an owner."""
    report = await ctx["assigner"].auto_assign_unassigned()
    logger.info("Sweep: %s", report.message)
    return report.model_dump()


class WorkerSettings:
    functions = [auto_assign_ticket, route_email_ticket, sweep_unassigned_tickets]
    cron_jobs = [cron(sweep_unassigned_tickets, minute=0)] if AUTO_ASSIGN_SWEEP_ENABLED else []
    on_startup = startup
    redis_settings = replace(
        RedisSettings.from_dsn(REDIS_URL),
        conn_timeout=REDIS_CONN_TIMEOUT,
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Worker starting (Redis: %s).", REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL)
    run_worker(WorkerSettings)
