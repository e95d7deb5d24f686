"""
Auth gate: resolves the x-api-key header to the Room it was issued for.
"""
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader

from agentmesh.db.models import Room
from agentmesh.db.store import Store
from agentmesh.errors import Unauthorized, Forbidden

logger = logging.getLogger(__name__)

API_KEY_HEADER = "x-api-key"

# auto_error=False so a missing header reaches us and becomes a 401, not FastAPI's 403.
_api_key_scheme = APIKeyHeader(name=API_KEY_HEADER, auto_error=False)


def get_store(request: Request) -> Store:
    """Return the store opened by the application lifespan."""
    return request.app.state.store


async def resolve_room(store: Store, api_key: Optional[str]) -> Room:
    """Map an API key to its Room.

    Raises:
        Unauthorized  no key supplied
        Forbidden     key supplied but not issued to any room
    """
    if not api_key:
        raise Unauthorized("Missing x-api-key header")
    room = await store.get_room_by_key(api_key)
    if room is None:
        logger.warning("Rejected request with unknown API key")
        raise Forbidden("Invalid API key")
    return room


async def require_room(
    api_key: Optional[str] = Depends(_api_key_scheme),
    store: Store = Depends(get_store),
) -> Room:
    """FastAPI dependency: the authenticated Room for this request."""
    return await resolve_room(store, api_key)
