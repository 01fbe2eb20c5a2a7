"""
Staff availability listing: agents with current load and vacation status.

The (agents, tickets) snapshot is cached in Redis for STAFF_CACHE_TTL_SECONDS so
repeated listings don't hammer Zammad. Dispatch never reads this cache.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from ticket_dispatch.config import REDIS_URL, STAFF_CACHE_TTL_SECONDS
from ticket_dispatch.errors import AuthorizationError
from ticket_dispatch.models import (
    AdminActor,
    Agent,
    CustomerActor,
    StaffActor,
    StaffAvailability,
    StaffAvailabilityList,
    Ticket,
)
from ticket_dispatch.services.agent_selection import (
    agent_display_name,
    compute_agent_loads,
    is_on_vacation,
)
from ticket_dispatch.services.ticket_states import SYSTEM_USER_ID, get_active_state_ids

logger = logging.getLogger(__name__)

STAFF_SNAPSHOT_KEY = "staff:snapshot"

_redis_client = None


def _redis():
    import redis
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    return _redis_client


def _load_cached_snapshot() -> Optional[tuple[list[Agent], list[Ticket]]]:
    try:
        raw = _redis().get(STAFF_SNAPSHOT_KEY)
    except Exception as e:
        logger.warning("Staff snapshot cache unavailable: %s", e)
        return None
    if not raw:
        return None
    data = json.loads(raw)
    return (
        [Agent.model_validate(a) for a in data.get("agents", [])],
        [Ticket.model_validate(t) for t in data.get("tickets", [])],
    )


def _store_snapshot(agents: list[Agent], tickets: list[Ticket]) -> None:
    payload = json.dumps({
        "agents": [a.model_dump(mode="json") for a in agents],
        "tickets": [t.model_dump(mode="json") for t in tickets],
    })
    try:
        _redis().setex(STAFF_SNAPSHOT_KEY, STAFF_CACHE_TTL_SECONDS, payload)
    except Exception as e:
        logger.warning("Could not cache staff snapshot: %s", e)


async def fetch_snapshot(backend) -> tuple[list[Agent], list[Ticket]]:
    """Cached (agents, tickets); on a miss both are fetched from Zammad in parallel."""
    cached = _load_cached_snapshot()
    if cached is not None:
        return cached
    agents, tickets = await asyncio.gather(
        asyncio.to_thread(backend.get_agents, True),
        asyncio.to_thread(backend.get_all_tickets),
    )
    _store_snapshot(agents, tickets)
    return agents, tickets


def _own_group_ids(actor: StaffActor, agents: list[Agent]) -> set[int]:
    """Groups of the staff member's own Zammad agent account, matched by email."""
    email = actor.email.lower()
    for agent in agents:
        if email and agent.email.lower() == email:
            return set(agent.group_ids)
    logger.warning("No Zammad agent found for staff %s.", actor.email)
    raise AuthorizationError("Staff account is not linked to a Zammad agent")


def build_staff_list(
    actor: AdminActor | StaffActor,
    agents: list[Agent],
    tickets: list[Ticket],
    now: datetime,
    unassigned_owner_id: int = SYSTEM_USER_ID,
) -> StaffAvailabilityList:
    """
    Staff see agents sharing at least one Zammad group with their own account;
    admins see everyone. Available agents first, then by ascending load.
    """
    agents = [a for a in agents if a.id != unassigned_owner_id]
    if isinstance(actor, StaffActor):
        own_groups = _own_group_ids(actor, agents)
        agents = [a for a in agents if own_groups.intersection(a.group_ids)]
    loads = compute_agent_loads(tickets, get_active_state_ids(), unassigned_owner_id)
    rows = []
    for agent in agents:
        away = is_on_vacation(agent, now)
        rows.append(StaffAvailability(
            id=agent.id,
            name=agent_display_name(agent),
            email=agent.email if isinstance(actor, AdminActor) else None,
            is_available=not away,
            is_on_vacation=away,
            vacation_end_date=agent.out_of_office_end_at if away else None,
            ticket_count=loads.get(agent.id, 0),
        ))
    rows.sort(key=lambda r: (not r.is_available, r.ticket_count))
    return StaffAvailabilityList(
        staff=rows,
        total=len(rows),
        available_count=sum(1 for r in rows if r.is_available),
    )


async def list_available_staff(
    actor,
    backend,
    now: Optional[datetime] = None,
    unassigned_owner_id: int = SYSTEM_USER_ID,
) -> StaffAvailabilityList:
    if isinstance(actor, CustomerActor):
        raise AuthorizationError("Only staff and admins can view available staff")
    agents, tickets = await fetch_snapshot(backend)
    return build_staff_list(actor, agents, tickets, now or datetime.now(timezone.utc), unassigned_owner_id)
