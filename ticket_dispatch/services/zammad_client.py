"""
Zammad REST client (stdlib HTTP, no requests dependency).

Synchronous; async callers run it through asyncio.to_thread.
5xx responses and network errors are retried with exponential backoff,
timeouts are not.
"""

import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Optional

from ticket_dispatch.config import (
    ZAMMAD_API_TOKEN,
    ZAMMAD_MAX_RETRIES,
    ZAMMAD_MAX_TICKET_PAGES,
    ZAMMAD_TICKET_PAGE_SIZE,
    ZAMMAD_TIMEOUT_SECONDS,
    ZAMMAD_URL,
)
from ticket_dispatch.errors import ZammadError, ZammadNotConfiguredError
from ticket_dispatch.models import Agent, Ticket
from ticket_dispatch.services.ticket_states import AGENT_ROLE_ID

logger = logging.getLogger(__name__)


def _error_detail(err: urllib.error.HTTPError) -> str:
    """Prefer Zammad's error_human, then error, then the HTTP status line."""
    try:
        body = json.loads(err.read().decode() or "{}")
    except (ValueError, OSError):
        body = {}
    if isinstance(body, dict):
        detail = body.get("error_human") or body.get("error")
        if detail:
            return str(detail)
    return f"HTTP {err.code}: {err.reason}"


class ZammadClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: float = ZAMMAD_TIMEOUT_SECONDS,
        max_retries: int = ZAMMAD_MAX_RETRIES,
    ):
        # Configuration is validated per request so the worker can start without Zammad.
        self.base_url = (base_url if base_url is not None else ZAMMAD_URL).rstrip("/")
        self.api_token = api_token if api_token is not None else ZAMMAD_API_TOKEN
        self.timeout = timeout
        self.max_retries = max_retries

    def is_configured(self) -> bool:
        return bool(self.base_url and self.api_token)

    def _request(
        self,
        method: str,
        endpoint: str,
        body: Optional[dict[str, Any]] = None,
        on_behalf_of: Optional[str] = None,
    ) -> Any:
        if not self.is_configured():
            raise ZammadNotConfiguredError()
        url = f"{self.base_url}/api/v1{endpoint}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        attempt = 0
        while True:
            req = urllib.request.Request(url, data=data, method=method)
            req.add_header("Authorization", f"Token token={self.api_token}")
            req.add_header("Content-Type", "application/json")
            req.add_header("Accept", "application/json")
            if on_behalf_of:
                req.add_header("X-On-Behalf-Of", on_behalf_of)
            try:
                with urllib.request.urlopen(req, timeout=self.timeout) as r:
                    raw = r.read().decode()
                    return json.loads(raw) if raw else None
            except urllib.error.HTTPError as e:
                detail = _error_detail(e)
                e.close()
                if e.code >= 500 and attempt < self.max_retries:
                    self._backoff(attempt, method, endpoint, detail)
                    attempt += 1
                    continue
                raise ZammadError(detail, http_status=e.code) from e
            except urllib.error.URLError as e:
                if isinstance(e.reason, TimeoutError):
                    raise ZammadError("Request timeout") from e
                if attempt < self.max_retries:
                    self._backoff(attempt, method, endpoint, str(e.reason))
                    attempt += 1
                    continue
                raise ZammadError(f"Zammad unreachable: {e.reason}") from e
            except TimeoutError as e:
                raise ZammadError("Request timeout") from e

    def _backoff(self, attempt: int, method: str, endpoint: str, reason: str) -> None:
        delay = 2 ** attempt
        logger.warning("Zammad %s %s failed (%s); retrying in %ss.", method, endpoint, reason, delay)
        time.sleep(delay)

    # --- Tickets ---

    def get_ticket(self, ticket_id: int, on_behalf_of: Optional[str] = None) -> Ticket:
        return Ticket.model_validate(self._request("GET", f"/tickets/{ticket_id}", on_behalf_of=on_behalf_of))

    def get_tickets(
        self,
        page: int = 1,
        per_page: int = ZAMMAD_TICKET_PAGE_SIZE,
        on_behalf_of: Optional[str] = None,
    ) -> list[Ticket]:
        raw = self._request("GET", f"/tickets?page={page}&per_page={per_page}", on_behalf_of=on_behalf_of)
        return [Ticket.model_validate(t) for t in raw or []]

    def get_all_tickets(
        self,
        on_behalf_of: Optional[str] = None,
        max_pages: int = ZAMMAD_MAX_TICKET_PAGES,
    ) -> list[Ticket]:
        """Walk pages until a short page or max_pages (safety limit)."""
        tickets: list[Ticket] = []
        page = 1
        while page <= max_pages:
            batch = self.get_tickets(page, ZAMMAD_TICKET_PAGE_SIZE, on_behalf_of)
            tickets.extend(batch)
            if len(batch) < ZAMMAD_TICKET_PAGE_SIZE:
                break
            page += 1
        logger.info("Fetched %d tickets across %d pages.", len(tickets), min(page, max_pages))
        return tickets

    def update_ticket(self, ticket_id: int, data: dict[str, Any], on_behalf_of: Optional[str] = None) -> Any:
        return self._request("PUT", f"/tickets/{ticket_id}", body=data, on_behalf_of=on_behalf_of)

    # --- Users ---

    def get_user(self, user_id: int) -> Agent:
        return Agent.model_validate(self._request("GET", f"/users/{user_id}"))

    def search_users(self, query: str) -> list[Agent]:
        params = urllib.parse.urlencode({"query": query})
        return [Agent.model_validate(u) for u in self._request("GET", f"/users/search?{params}") or []]

    def get_agents(self, active_only: bool = True) -> list[Agent]:
        """Users holding the Agent role, in the order Zammad returns them."""
        users = [Agent.model_validate(u) for u in self._request("GET", "/users") or []]
        agents = [u for u in users if AGENT_ROLE_ID in u.role_ids]
        if active_only:
            return [a for a in agents if a.active]
        return agents


_default_client: Optional[ZammadClient] = None


def get_zammad_client() -> ZammadClient:
    """Process-wide client built from config."""
    global _default_client
    if _default_client is None:
        _default_client = ZammadClient()
    return _default_client
