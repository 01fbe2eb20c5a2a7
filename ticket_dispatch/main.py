"""REST API for region-scoped ticket access and auto-assignment dispatch."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional
from uuid import uuid4

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ticket_dispatch.config import CRON_SECRET, REDIS_URL, ZAMMAD_WEBHOOK_SECRET
from ticket_dispatch.errors import AuthorizationError, DispatchError, ZammadError
from ticket_dispatch.models import (
    AdminActor,
    AutoAssignSweepReport,
    CustomerActor,
    Role,
    StaffAvailabilityList,
    Ticket,
    TicketDispatchAccepted,
    TicketDispatchRequest,
    UnassignedSummary,
    UserMappingRequest,
    ZammadWebhookPayload,
    parse_actor,
)
from ticket_dispatch.regions import get_group_id_by_region, get_region_by_group_id
from ticket_dispatch.services.access_control import (
    filter_tickets_by_region,
    validate_ticket_access,
    validate_ticket_creation,
)
from ticket_dispatch.services.auto_assign import ensure_dispatchable, get_auto_assigner
from ticket_dispatch.services.email_routing import is_staged_email_ticket, verify_webhook_signature
from ticket_dispatch.services.staff_directory import list_available_staff
from ticket_dispatch.services.user_mapping import link_local_user
from ticket_dispatch.services.zammad_client import get_zammad_client

logger = logging.getLogger(__name__)

_arq_pool = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _arq_pool
    _arq_pool = None
    try:
        from arq import create_pool
        from arq.connections import RedisSettings
        _arq_pool = await create_pool(RedisSettings.from_dsn(REDIS_URL))
    except Exception as e:
        logger.warning("Redis/ARQ pool unavailable: %s. POST /tickets/dispatch will return 503.", e)
    try:
        yield
    finally:
        if _arq_pool is not None:
            await _arq_pool.close()
            _arq_pool = None


app = FastAPI(
    title="Ticket Dispatch",
    description="Region-scoped ticket access and least-loaded auto-assignment over Zammad.",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status = exc.status_code
    # Zammad enforces customer ownership itself; pass its 403/404 through.
    if isinstance(exc, ZammadError) and exc.http_status in (403, 404):
        status = exc.http_status
    return JSONResponse(status_code=status, content={"detail": exc.detail})


# --- Actor resolution (headers are set by the session gateway) ---


def optional_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_email: Optional[str] = Header(None),
    x_actor_role: Optional[str] = Header(None),
    x_actor_region: Optional[str] = Header(None),
):
    if not x_actor_id or not x_actor_role:
        return None
    data = {"id": x_actor_id, "email": x_actor_email or "", "role": x_actor_role}
    if x_actor_region and x_actor_role != Role.ADMIN.value:
        data["region"] = x_actor_region
    try:
        return parse_actor(data)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid actor headers")


def current_actor(actor=Depends(optional_actor)):
    if actor is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return actor


def require_admin(actor) -> None:
    if not isinstance(actor, AdminActor):
        raise AuthorizationError("Admin role required")


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


# --- Dispatch ---


@app.post("/tickets/dispatch", status_code=202, response_model=TicketDispatchAccepted)
async def dispatch_ticket(payload: TicketDispatchRequest, actor=Depends(current_actor)) -> TicketDispatchAccepted:
    """
    Called by the ticket-creation flow right after the Zammad ticket exists.
    The ticket must be visible to the actor, still in `group_id`, new and unowned (else 409).
    Returns 202 immediately; a background worker assigns and notifies.
    """
    region = payload.region or get_region_by_group_id(payload.group_id)
    if region is None:
        raise HTTPException(status_code=400, detail=f"Group {payload.group_id} is not a region group")
    if get_group_id_by_region(region) != payload.group_id:
        raise HTTPException(status_code=400, detail=f"Group {payload.group_id} does not belong to region {region.value}")
    validate_ticket_creation(actor, region)

    client = get_zammad_client()
    on_behalf_of = actor.email if isinstance(actor, CustomerActor) else None
    ticket = await asyncio.to_thread(client.get_ticket, payload.ticket_id, on_behalf_of)
    ensure_dispatchable(ticket, payload.group_id)

    pool = _arq_pool
    if pool is None:
        raise HTTPException(status_code=503, detail="Worker pool not ready")
    job_payload = payload.model_copy(update={"region": region}).model_dump(mode="json")
    job = await pool.enqueue_job("auto_assign_ticket", job_payload)
    job_id = job.job_id if job else str(uuid4())
    return TicketDispatchAccepted(ticket_id=payload.ticket_id, job_id=job_id)


@app.post("/webhooks/zammad", status_code=202)
async def zammad_webhook(request: Request, x_zammad_signature: Optional[str] = Header(None)) -> dict:
    """Zammad trigger: staged email tickets are queued for region routing, everything else is ignored."""
    body = await request.body()
    if ZAMMAD_WEBHOOK_SECRET and not (
        x_zammad_signature and verify_webhook_signature(body, x_zammad_signature, ZAMMAD_WEBHOOK_SECRET)
    ):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    try:
        payload = ZammadWebhookPayload.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid webhook payload")
    if not is_staged_email_ticket(payload):
        return {"status": "ignored", "ticket_id": payload.ticket.id}
    pool = _arq_pool
    if pool is None:
        raise HTTPException(status_code=503, detail="Worker pool not ready")
    job = await pool.enqueue_job("route_email_ticket", payload.model_dump(mode="json"))
    return {"status": "accepted", "ticket_id": payload.ticket.id, "job_id": job.job_id if job else str(uuid4())}


@app.post("/tickets/auto-assign", response_model=AutoAssignSweepReport)
async def sweep_unassigned(
    actor=Depends(optional_actor),
    x_cron_secret: Optional[str] = Header(None),
) -> AutoAssignSweepReport:
    """Assign all unassigned tickets now (admin, or scheduler with X-Cron-Secret)."""
    if x_cron_secret and CRON_SECRET and x_cron_secret != CRON_SECRET:
        raise AuthorizationError("Invalid cron secret")
    is_cron = bool(CRON_SECRET) and x_cron_secret == CRON_SECRET
    if not is_cron:
        if actor is None:
            raise HTTPException(status_code=401, detail="Authentication required")
        require_admin(actor)
    return await get_auto_assigner().auto_assign_unassigned()


@app.get("/tickets/auto-assign", response_model=UnassignedSummary)
async def unassigned_status(actor=Depends(current_actor)) -> UnassignedSummary:
    require_admin(actor)
    return await get_auto_assigner().unassigned_summary()


# --- Region-scoped reads ---


@app.get("/tickets", response_model=list[Ticket])
async def list_tickets(actor=Depends(current_actor)) -> list[Ticket]:
    """All tickets the actor may see. Customer lists are scoped to their own tickets by Zammad."""
    client = get_zammad_client()
    on_behalf_of = actor.email if isinstance(actor, CustomerActor) else None
    tickets = await asyncio.to_thread(client.get_all_tickets, on_behalf_of)
    return filter_tickets_by_region(tickets, actor)


@app.get("/tickets/{ticket_id}", response_model=Ticket)
async def get_ticket(ticket_id: int, actor=Depends(current_actor)) -> Ticket:
    client = get_zammad_client()
    if isinstance(actor, CustomerActor):
        return await asyncio.to_thread(client.get_ticket, ticket_id, actor.email)
    ticket = await asyncio.to_thread(client.get_ticket, ticket_id)
    validate_ticket_access(actor, ticket.group_id)
    return ticket


@app.get("/staff/available", response_model=StaffAvailabilityList)
async def available_staff(actor=Depends(current_actor)) -> StaffAvailabilityList:
    return await list_available_staff(actor, get_zammad_client())


@app.post("/user-mappings", status_code=201)
def create_user_mapping(payload: UserMappingRequest, actor=Depends(current_actor)) -> dict:
    """Link a Zammad agent to a local portal account so it receives notifications."""
    require_admin(actor)
    link_local_user(payload.zammad_user_id, payload.local_user_id)
    return {"status": "ok", "zammad_user_id": payload.zammad_user_id, "local_user_id": payload.local_user_id}
