"""
Region <-> Zammad group mapping.

Every region has a dedicated Zammad group. Group 1 ("Users") doubles as the
Africa group and is where customer-initiated and legacy tickets live, so it is
readable by every role.
"""

from typing import Optional

from ticket_dispatch.models import Region

USERS_GROUP_ID = 1
# Newly created email tickets wait here until routed; not a region group.
STAGING_GROUP_ID = 9

REGION_GROUP_MAPPING: dict[Region, int] = {
    Region.ASIA_PACIFIC: 4,
    Region.MIDDLE_EAST: 3,
    Region.AFRICA: 1,
    Region.NORTH_AMERICA: 6,
    Region.LATIN_AMERICA: 7,
    Region.EUROPE_ZONE_1: 2,
    Region.EUROPE_ZONE_2: 8,
    Region.CIS: 5,
}

GROUP_REGION_MAPPING: dict[int, Region] = {g: r for r, g in REGION_GROUP_MAPPING.items()}

ALL_GROUP_IDS: frozenset[int] = frozenset(GROUP_REGION_MAPPING)
ALL_REGIONS: frozenset[Region] = frozenset(Region)


def get_group_id_by_region(region: Region) -> int:
    """Zammad group id for a region."""
    return REGION_GROUP_MAPPING[Region(region)]


def get_region_by_group_id(group_id: Optional[int]) -> Optional[Region]:
    """Region for a Zammad group id, or None for unknown/staging groups."""
    if group_id is None:
        return None
    return GROUP_REGION_MAPPING.get(group_id)


def region_label(group_id: Optional[int]) -> str:
    """Region value for messages and logs; 'unknown' when the group has no region."""
    region = get_region_by_group_id(group_id)
    return region.value if region else "unknown"


def is_valid_region(value: str) -> bool:
    return value in {r.value for r in Region}
