"""
Zammad ticket lifecycle: which state ids count as active workload.

Ids match GET /api/v1/ticket_states on the production instance.
"""

from enum import IntEnum

from ticket_dispatch.config import ZAMMAD_SYSTEM_USER_ID

# Owner id Zammad reports for tickets nobody owns (its built-in system user).
SYSTEM_USER_ID = ZAMMAD_SYSTEM_USER_ID
# Zammad role ids (GET /api/v1/roles).
ADMIN_ROLE_ID = 1
AGENT_ROLE_ID = 2


class TicketState(IntEnum):
    NEW = 1
    OPEN = 2
    PENDING_REMINDER = 3
    CLOSED = 4
    MERGED = 5
    PENDING_CLOSE = 6


STATE_NAMES: dict[int, str] = {
    TicketState.NEW: "new",
    TicketState.OPEN: "open",
    TicketState.PENDING_REMINDER: "pending reminder",
    TicketState.CLOSED: "closed",
    TicketState.MERGED: "merged",
    TicketState.PENDING_CLOSE: "pending close",
}

ACTIVE_STATES: tuple[int, ...] = (
    TicketState.NEW,
    TicketState.OPEN,
    TicketState.PENDING_REMINDER,
    TicketState.PENDING_CLOSE,
)

# States an unassigned ticket may be in to be picked up by the sweep.
ASSIGNABLE_STATES: tuple[int, ...] = (TicketState.NEW, TicketState.OPEN)


def get_active_state_ids() -> list[int]:
    """State ids counted toward an agent's load."""
    return [int(s) for s in ACTIVE_STATES]


def is_active_state(state_id: int) -> bool:
    return state_id in ACTIVE_STATES


def state_name(state_id: int) -> str:
    """Human-readable state; unknown ids read as closed."""
    return STATE_NAMES.get(state_id, "closed")


def is_unassigned(owner_id, unassigned_owner_id: int = SYSTEM_USER_ID) -> bool:
    """No owner, or owned by the system user."""
    return not owner_id or owner_id == unassigned_owner_id


class TicketLifecycle:
    """Default lifecycle classifier handed to the dispatcher."""

    def get_active_state_ids(self) -> list[int]:
        return get_active_state_ids()
