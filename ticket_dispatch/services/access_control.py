"""
Region-based authorization.

Pure functions over an actor and a region/group/conversation:
- Admin can access everything.
- Staff can access their home region's group plus the shared Users group
  (legacy customer tickets live there). Staff without a region see nothing.
- Customers can access the Users group; ticket ownership is their real
  boundary, so ticket lists are never group-filtered for them.

Used both to filter query results and to validate mutating requests.
"""

from typing import Iterable, Optional, TypeVar

from ticket_dispatch.errors import AuthorizationError
from ticket_dispatch.models import (
    AdminActor,
    Conversation,
    CustomerActor,
    Region,
    StaffActor,
    Ticket,
)
from ticket_dispatch.regions import (
    ALL_GROUP_IDS,
    ALL_REGIONS,
    USERS_GROUP_ID,
    get_group_id_by_region,
    region_label,
)

T = TypeVar("T", bound=Ticket)
C = TypeVar("C", bound=Conversation)

AnyActor = AdminActor | StaffActor | CustomerActor


def has_region_access(actor: AnyActor, region: Region) -> bool:
    """True for admins, for actors in that region, and for customers without a region."""
    if isinstance(actor, AdminActor):
        return True
    if actor.region is not None and actor.region == region:
        return True
    return isinstance(actor, CustomerActor) and actor.region is None


def get_accessible_group_ids(actor: AnyActor) -> set[int]:
    """Materialize the set of Zammad groups the actor can read."""
    if isinstance(actor, AdminActor):
        return set(ALL_GROUP_IDS)
    if isinstance(actor, CustomerActor):
        return {USERS_GROUP_ID}
    if isinstance(actor, StaffActor) and actor.region is not None:
        return {get_group_id_by_region(actor.region), USERS_GROUP_ID}
    return set()


def has_group_access(actor: AnyActor, group_id: int) -> bool:
    if isinstance(actor, AdminActor):
        return True
    return group_id in get_accessible_group_ids(actor)


def get_accessible_regions(actor: AnyActor) -> set[Region]:
    if isinstance(actor, AdminActor):
        return set(ALL_REGIONS)
    if actor.region is not None:
        return {actor.region}
    return set()


def filter_tickets_by_region(tickets: Iterable[T], actor: AnyActor) -> list[T]:
    """
    Admins and customers get the input unchanged (order and length preserved);
    customer lists are already scoped to the customer's own tickets by the backend.
    Staff keep only tickets with a defined, accessible group_id.
    """
    tickets = list(tickets)
    if isinstance(actor, (AdminActor, CustomerActor)):
        return tickets
    accessible = get_accessible_group_ids(actor)
    return [t for t in tickets if t.group_id is not None and t.group_id in accessible]


def _region_text(region) -> str:
    return region.value if isinstance(region, Region) else str(region)


def validate_ticket_creation(actor: AnyActor, target_region: Region) -> None:
    """Raise AuthorizationError if staff tries to create a ticket outside their region."""
    if not isinstance(actor, StaffActor):
        # Admins are unrestricted; a customer's region is assigned by the system.
        return
    if actor.region is not None and actor.region == target_region:
        return
    raise AuthorizationError(
        f"You do not have permission to create tickets in region: {_region_text(target_region)}"
        f" (your region: {actor.region.value if actor.region else 'none'})"
    )


def validate_ticket_access(actor: AnyActor, group_id: Optional[int]) -> None:
    if group_id is not None and has_group_access(actor, group_id):
        return
    raise AuthorizationError(
        f"You do not have permission to access tickets in region: {region_label(group_id)}"
    )


def has_conversation_region_access(actor: AnyActor, conversation: Conversation) -> bool:
    if isinstance(actor, AdminActor):
        return True
    if isinstance(actor, CustomerActor):
        return conversation.customer_email == actor.email
    # Staff: conversations without a region are legacy data, visible to everyone.
    return conversation.region is None or conversation.region == actor.region


def filter_conversations_by_region(conversations: Iterable[C], actor: AnyActor) -> list[C]:
    return [c for c in conversations if has_conversation_region_access(actor, c)]


def validate_conversation_access(actor: AnyActor, conversation: Conversation) -> None:
    if has_conversation_region_access(actor, conversation):
        return
    region = conversation.region.value if conversation.region else "unknown"
    raise AuthorizationError(
        f"You do not have permission to access this conversation in region: {region}"
    )
