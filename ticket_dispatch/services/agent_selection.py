"""
Pure agent-selection logic for auto-assignment: load counting, exclusion
filters, vacation windows and least-loaded pick. No I/O.
"""

from collections import Counter
from datetime import datetime
from typing import Iterable, Optional

from ticket_dispatch.models import Agent, AssignedAgent, Ticket
from ticket_dispatch.services.ticket_states import ADMIN_ROLE_ID, SYSTEM_USER_ID, is_unassigned


def compute_agent_loads(
    tickets: Iterable[Ticket],
    active_state_ids: Iterable[int],
    unassigned_owner_id: int = SYSTEM_USER_ID,
) -> dict[int, int]:
    """Active tickets per owner. Unassigned tickets (no owner or `unassigned_owner_id`) are not counted."""
    active = set(active_state_ids)
    return dict(Counter(
        t.owner_id
        for t in tickets
        if not is_unassigned(t.owner_id, unassigned_owner_id) and t.state_id in active
    ))


def is_on_vacation(agent: Agent, now: datetime) -> bool:
    """
    Out-of-office check at `now`:
      - start and end: inclusive range
      - start only: open-ended from start
      - end only: away until end
    An agent flagged out_of_office without any bound is treated as available.
    """
    if not agent.out_of_office:
        return False
    start, end = agent.out_of_office_start_at, agent.out_of_office_end_at
    if start and end:
        return start <= now <= end
    if start:
        return now >= start
    if end:
        return now <= end
    return False


def _is_excluded_email(agent: Agent, excluded_emails: frozenset[str]) -> bool:
    return (agent.email or "").lower() in excluded_emails


def filter_eligible_agents(
    agents: list[Agent],
    group_id: int,
    now: datetime,
    excluded_emails: frozenset[str],
    unassigned_owner_id: int = SYSTEM_USER_ID,
) -> list[Agent]:
    """
    Drop, in order: the unassigned-owner account, system mailboxes, Admin-role
    holders, agents without membership in `group_id`, agents on vacation.
    Input order is preserved.
    """
    excluded = frozenset(e.lower() for e in excluded_emails)
    # Writing this id as owner would leave the ticket unassigned.
    eligible = [a for a in agents if a.id != unassigned_owner_id]
    eligible = [a for a in eligible if not _is_excluded_email(a, excluded)]
    eligible = [a for a in eligible if ADMIN_ROLE_ID not in a.role_ids]
    eligible = [a for a in eligible if group_id in a.group_ids]
    return [a for a in eligible if not is_on_vacation(a, now)]


def pick_least_loaded(agents: list[Agent], loads: dict[int, int]) -> Optional[Agent]:
    """Lowest load wins; ties go to whoever the backend listed first."""
    if not agents:
        return None
    ranked = sorted(enumerate(agents), key=lambda pair: (loads.get(pair[1].id, 0), pair[0]))
    return ranked[0][1]


def agent_display_name(agent: Agent) -> str:
    """'firstname lastname', falling back to login, then email."""
    name = f"{agent.firstname or ''} {agent.lastname or ''}".strip()
    return name or agent.login or agent.email


def to_assigned_agent(agent: Agent) -> AssignedAgent:
    return AssignedAgent(id=agent.id, name=agent_display_name(agent), email=agent.email)
