"""
Auto-assignment: route a ticket to the least-loaded eligible agent of its group.

Reads (agents, tickets) run concurrently; selection is pure; the ticket update
happens last. Concurrent dispatches are not serialized: two tickets dispatched
at the same moment may both land on the same least-loaded agent.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

from ticket_dispatch.config import DISPATCH_EXCLUDED_EMAILS
from ticket_dispatch.errors import DispatchConflictError, ZammadError
from ticket_dispatch.models import (
    Agent,
    AssignmentResult,
    AutoAssignSweepReport,
    SweepEntry,
    Ticket,
    UnassignedSummary,
    UnassignedTicketInfo,
)
from ticket_dispatch.regions import get_region_by_group_id, region_label
from ticket_dispatch.services.agent_selection import (
    compute_agent_loads,
    filter_eligible_agents,
    pick_least_loaded,
    to_assigned_agent,
)
from ticket_dispatch.services.ticket_states import (
    ASSIGNABLE_STATES,
    SYSTEM_USER_ID,
    TicketLifecycle,
    TicketState,
    is_unassigned,
    state_name,
)

logger = logging.getLogger(__name__)


class TicketBackend(Protocol):
    def get_agents(self, active_only: bool = True) -> list[Agent]: ...

    def get_ticket(self, ticket_id: int) -> Ticket: ...

    def get_all_tickets(self) -> list[Ticket]: ...

    def update_ticket(self, ticket_id: int, data: dict) -> object: ...


class LifecycleClassifier(Protocol):
    def get_active_state_ids(self) -> list[int]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def no_agents_error(group_id: int) -> str:
    return f"No available agents for region: {region_label(group_id)}"


def ensure_dispatchable(ticket: Ticket, group_id: int, unassigned_owner_id: int = SYSTEM_USER_ID) -> None:
    """Only a new, unowned ticket still in `group_id` may be auto-assigned."""
    if ticket.group_id != group_id:
        raise DispatchConflictError(f"Ticket {ticket.id} is in group {ticket.group_id}, not {group_id}")
    if not is_unassigned(ticket.owner_id, unassigned_owner_id):
        raise DispatchConflictError(f"Ticket {ticket.id} is already assigned")
    if ticket.state_id != TicketState.NEW:
        raise DispatchConflictError(f"Ticket {ticket.id} is not new (state: {state_name(ticket.state_id)})")


class AutoAssigner:
    """Stateless dispatcher; collaborators and the exclusion list are injected."""

    def __init__(
        self,
        backend: TicketBackend,
        lifecycle: Optional[LifecycleClassifier] = None,
        excluded_emails: frozenset[str] = DISPATCH_EXCLUDED_EMAILS,
        clock: Callable[[], datetime] = _utcnow,
        unassigned_owner_id: int = SYSTEM_USER_ID,
    ):
        self._backend = backend
        self._lifecycle = lifecycle or TicketLifecycle()
        self._excluded_emails = frozenset(e.lower() for e in excluded_emails)
        self._clock = clock
        self._unassigned_owner_id = unassigned_owner_id

    def _is_pending(self, ticket: Ticket) -> bool:
        return is_unassigned(ticket.owner_id, self._unassigned_owner_id) and ticket.state_id in ASSIGNABLE_STATES

    async def _snapshot(self) -> tuple[list[Agent], list[Ticket]]:
        agents, tickets = await asyncio.gather(
            asyncio.to_thread(self._backend.get_agents, True),
            asyncio.to_thread(self._backend.get_all_tickets),
        )
        return agents, tickets

    async def check_dispatchable(self, ticket_id: int, group_id: int) -> Ticket:
        """Re-read the ticket; raises DispatchConflictError if it was picked up or moved meanwhile."""
        ticket = await asyncio.to_thread(self._backend.get_ticket, ticket_id)
        ensure_dispatchable(ticket, group_id, self._unassigned_owner_id)
        return ticket

    async def auto_assign_single_ticket(
        self,
        ticket_id: int,
        ticket_number: str,
        ticket_title: str,
        group_id: int,
    ) -> AssignmentResult:
        """
        Assign one freshly created ticket. Returns a failure result (no backend write)
        when nobody is eligible; backend errors propagate to the caller.
        """
        agents, tickets = await self._snapshot()
        loads = compute_agent_loads(tickets, self._lifecycle.get_active_state_ids(), self._unassigned_owner_id)
        eligible = filter_eligible_agents(
            agents, group_id, self._clock(), self._excluded_emails, self._unassigned_owner_id,
        )
        selected = pick_least_loaded(eligible, loads)
        if selected is None:
            error = no_agents_error(group_id)
            logger.warning("Ticket #%s (%s): %s.", ticket_number, ticket_id, error)
            return AssignmentResult(success=False, error=error)

        await asyncio.to_thread(
            self._backend.update_ticket,
            ticket_id,
            {"owner_id": selected.id, "state_id": int(TicketState.OPEN)},
        )
        assigned = to_assigned_agent(selected)
        logger.info(
            "Ticket #%s %r assigned to %s <%s> (load=%d, eligible=%d).",
            ticket_number, ticket_title, assigned.name, assigned.email,
            loads.get(selected.id, 0), len(eligible),
        )
        return AssignmentResult(success=True, assigned_to=assigned)

    async def auto_assign_unassigned(self) -> AutoAssignSweepReport:
        """
        Assign every unassigned new/open ticket. The local load snapshot is bumped
        after each assignment so one sweep spreads tickets across agents.
        """
        agents, tickets = await self._snapshot()
        pending = [t for t in tickets if self._is_pending(t)]
        if not pending:
            return AutoAssignSweepReport(message="No unassigned tickets found")

        loads = compute_agent_loads(tickets, self._lifecycle.get_active_state_ids(), self._unassigned_owner_id)
        now = self._clock()
        results: list[SweepEntry] = []
        for ticket in pending:
            entry = SweepEntry(ticket_id=ticket.id, ticket_number=ticket.number)
            eligible = (
                filter_eligible_agents(agents, ticket.group_id, now, self._excluded_emails, self._unassigned_owner_id)
                if ticket.group_id is not None
                else []
            )
            selected = pick_least_loaded(eligible, loads)
            if selected is None:
                entry.error = no_agents_error(ticket.group_id)
                results.append(entry)
                continue
            try:
                await asyncio.to_thread(
                    self._backend.update_ticket,
                    ticket.id,
                    {"owner_id": selected.id, "state_id": int(TicketState.OPEN)},
                )
            except ZammadError as e:
                logger.error("Failed to assign ticket %s: %s", ticket.id, e)
                entry.error = e.detail
                results.append(entry)
                continue
            loads[selected.id] = loads.get(selected.id, 0) + 1
            entry.assigned_to = to_assigned_agent(selected)
            results.append(entry)
            logger.info("Ticket #%s assigned to %s (%s).", ticket.number, entry.assigned_to.name, selected.email)

        success = sum(1 for r in results if r.assigned_to is not None)
        failed = len(results) - success
        return AutoAssignSweepReport(
            message=f"Auto-assignment completed: {success} assigned, {failed} failed",
            processed=len(pending),
            success=success,
            failed=failed,
            results=results,
        )

    async def unassigned_summary(self) -> UnassignedSummary:
        """Unassigned new/open tickets grouped by region (for monitoring)."""
        tickets = await asyncio.to_thread(self._backend.get_all_tickets)
        pending = [t for t in tickets if self._is_pending(t)]
        by_region: dict[str, int] = {}
        for t in pending:
            region = get_region_by_group_id(t.group_id)
            label = region.value if region else f"Group {t.group_id}"
            by_region[label] = by_region.get(label, 0) + 1
        return UnassignedSummary(
            total_unassigned=len(pending),
            by_region=by_region,
            tickets=[
                UnassignedTicketInfo(
                    id=t.id, number=t.number, title=t.title, group_id=t.group_id, created_at=t.created_at,
                )
                for t in pending
            ],
        )


_default_assigner: Optional[AutoAssigner] = None


def get_auto_assigner() -> AutoAssigner:
    global _default_assigner
    if _default_assigner is None:
        from ticket_dispatch.services.zammad_client import get_zammad_client
        _default_assigner = AutoAssigner(get_zammad_client())
    return _default_assigner


async def auto_assign_single_ticket(
    ticket_id: int,
    ticket_number: str,
    ticket_title: str,
    group_id: int,
) -> AssignmentResult:
    """Module-level entry point using the configured Zammad client."""
    return await get_auto_assigner().auto_assign_single_ticket(ticket_id, ticket_number, ticket_title, group_id)
