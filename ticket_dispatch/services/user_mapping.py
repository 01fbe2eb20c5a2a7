"""
Zammad agent id -> local portal user ids (notification recipients).
Backed by Redis sets (user_mapping:zammad:{zammad_id}).
"""

import logging

from ticket_dispatch.config import REDIS_URL

logger = logging.getLogger(__name__)

USER_MAPPING_PREFIX = "user_mapping:zammad:"

_redis_client = None


def _redis():
    import redis
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(REDIS_URL, decode_responses=True)
    return _redis_client


def _mapping_key(zammad_user_id: int) -> str:
    return f"{USER_MAPPING_PREFIX}{zammad_user_id}"


def synthetic_user_id(zammad_user_id: int) -> str:
    """Id used for agents that only exist in Zammad (no local account yet)."""
    return f"zammad-{zammad_user_id}"


def link_local_user(zammad_user_id: int, local_user_id: str) -> None:
    """Record that a local portal user is the same person as a Zammad agent."""
    _redis().sadd(_mapping_key(zammad_user_id), local_user_id)
    logger.info("Linked Zammad user %s to local user %s.", zammad_user_id, local_user_id)


def resolve_local_user_ids_for_zammad_user_id(zammad_user_id: int) -> list[str]:
    """Synthetic id first, then every linked local account (sorted, deduplicated)."""
    synthetic = synthetic_user_id(zammad_user_id)
    linked = _redis().smembers(_mapping_key(zammad_user_id)) or set()
    return [synthetic] + sorted(u for u in linked if u and u != synthetic)
