from __future__ import annotations

import asyncio
import uuid
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ..lemmy_client import NotConnectedError, strip_port
from .state import utc_now


DEFAULT_POLL_SECONDS = 1.0
DEFAULT_MAX_ATTEMPTS = 20

SEARCH_COMMUNITIES = "Communities"
SEARCH_USERS = "Users"

# search type -> (list key in the Search response, view key, name fields)
_SEARCH_FIELDS: Dict[str, Tuple[str, str, Tuple[str, ...]]] = {
    SEARCH_COMMUNITIES: ("communities", "community", ("name", "title")),
    SEARCH_USERS: ("users", "person", ("name", "display_name")),
}


class CorrelationTimeout(TimeoutError):
    pass


class ItemFetchTimeout(CorrelationTimeout):
    pass


class IdentifierResolveTimeout(CorrelationTimeout):
    pass


@dataclass
class PendingOperation:
    key: str
    issued_at: datetime
    attempts_remaining: int


@dataclass(frozen=True)
class SearchCriteria:
    name: str
    instance: str
    search_type: str = SEARCH_COMMUNITIES


def _origin(actor_id: Any) -> str:
    if not isinstance(actor_id, str) or not actor_id:
        return ""
    return strip_port(urlparse(actor_id).netloc)


def _matches(criteria: SearchCriteria, view: Dict[str, Any], name_fields: Tuple[str, ...]) -> bool:
    if _origin(view.get("actor_id")) != strip_port(criteria.instance):
        return False
    wanted = criteria.name.strip().casefold()
    for field_name in name_fields:
        value = view.get(field_name)
        if isinstance(value, str) and value.strip().casefold() == wanted:
            return True
    return False


class PendingOperationCorrelator:
    """Matches replies on the shared connection back to the call that asked for them.

    Single-item fetches are keyed by (kind, id); identifier searches are keyed
    by a random token. Both wait by polling every poll_seconds, at most
    max_attempts times.
    """

    def __init__(
        self,
        *,
        is_connected: Callable[[], bool],
        logger,
        poll_seconds: float = DEFAULT_POLL_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self._is_connected = is_connected
        self.logger = logger
        self.poll_seconds = poll_seconds
        self.max_attempts = max(1, int(max_attempts))
        self._outstanding: Counter = Counter()
        self._arrivals: Dict[Tuple[str, int], Deque[Dict[str, Any]]] = {}
        self._searches: Dict[str, SearchCriteria] = {}
        self._resolved: Dict[str, Optional[int]] = {}
        # token -> replies of its search type still to come before its own must have arrived
        self._replies_due: Dict[str, int] = {}
        self.pending: Dict[int, PendingOperation] = {}

    @property
    def timeout_seconds(self) -> float:
        return self.poll_seconds * self.max_attempts

    def is_outstanding(self, kind: str, item_id: int) -> bool:
        return self._outstanding[(kind, int(item_id))] > 0

    def _require_connection(self, what: str) -> None:
        if not self._is_connected():
            raise NotConnectedError(f"Must be connected to {what}")

    def _track(self, key: str) -> PendingOperation:
        op = PendingOperation(key=key, issued_at=utc_now(), attempts_remaining=self.max_attempts)
        self.pending[id(op)] = op
        return op

    async def _poll(self, op: PendingOperation, take: Callable[[], Tuple[bool, Any]]) -> Tuple[bool, Any]:
        while op.attempts_remaining > 0:
            await asyncio.sleep(self.poll_seconds)
            op.attempts_remaining -= 1
            found, value = take()
            if found:
                return True, value
        return False, None

    async def fetch_by_id(self, kind: str, item_id: int, issue: Callable[[], None]) -> Dict[str, Any]:
        self._require_connection(f"get {kind}")
        key = (kind, int(item_id))
        self._outstanding[key] += 1
        op = self._track(f"{kind}:{item_id}")

        def take() -> Tuple[bool, Any]:
            queue = self._arrivals.get(key)
            if not queue:
                return False, None
            item = queue.popleft()
            if not queue:
                del self._arrivals[key]
            return True, item

        try:
            issue()
            found, item = await self._poll(op, take)
        finally:
            self.pending.pop(id(op), None)
            self._outstanding[key] -= 1
            if self._outstanding[key] <= 0:
                del self._outstanding[key]
                self._arrivals.pop(key, None)

        if not found:
            self.logger.warning("Correlated fetch timed out kind=%s id=%s", kind, item_id)
            raise ItemFetchTimeout(
                f"{kind} with id {item_id} not found within {self.timeout_seconds:g} seconds"
            )
        return item

    def record_arrival(self, kind: str, item_id: Any, item: Dict[str, Any]) -> bool:
        try:
            key = (kind, int(item_id))
        except (TypeError, ValueError):
            return False
        if self._outstanding[key] <= 0:
            self._outstanding.pop(key, None)
            return False
        self._arrivals.setdefault(key, deque()).append(item)
        return True

    async def resolve_identifier(
        self,
        criteria: SearchCriteria,
        issue: Callable[[], None],
    ) -> Optional[int]:
        self._require_connection(f"search {criteria.search_type.lower()}")
        token = uuid.uuid4().hex
        self._replies_due[token] = 1 + sum(
            1 for pending in self._searches.values() if pending.search_type == criteria.search_type
        )
        self._searches[token] = criteria
        op = self._track(token)

        def take() -> Tuple[bool, Any]:
            if token in self._resolved:
                return True, self._resolved[token]
            return False, None

        try:
            issue()
            found, resolved_id = await self._poll(op, take)
        finally:
            self.pending.pop(id(op), None)
            self._searches.pop(token, None)
            self._resolved.pop(token, None)
            self._replies_due.pop(token, None)

        if not found:
            self.logger.warning(
                "Identifier resolution timed out type=%s name=%s instance=%s",
                criteria.search_type,
                criteria.name,
                criteria.instance,
            )
            raise IdentifierResolveTimeout(
                f"Could not resolve {criteria.search_type.lower()} id for {criteria.name}@{criteria.instance}"
            )
        return resolved_id

    def record_search_results(self, data: Dict[str, Any]) -> int:
        """Resolve outstanding tokens of the response's search type.

        Search replies do not echo the query, so a token whose name and
        origin match an item resolves to that item's id. A token without a
        match only resolves to None once as many replies of its type have
        arrived as there were searches of that type outstanding when it was
        issued (itself included); until then the reply may belong to an
        earlier search.
        """
        response_type = data.get("type_")
        resolved = 0
        for search_type, (list_key, view_key, name_fields) in _SEARCH_FIELDS.items():
            if response_type not in (None, "All", search_type):
                continue
            raw = data.get(list_key)
            if not isinstance(raw, list):
                continue
            views: List[Dict[str, Any]] = [
                item.get(view_key) for item in raw if isinstance(item, dict) and isinstance(item.get(view_key), dict)
            ]
            for token, criteria in list(self._searches.items()):
                if criteria.search_type != search_type or token in self._resolved:
                    continue
                match = next((view for view in views if _matches(criteria, view, name_fields)), None)
                due = self._replies_due.get(token, 1) - 1
                self._replies_due[token] = due
                if match is not None and "id" in match:
                    self._resolved[token] = int(match["id"])
                elif due <= 0:
                    self._resolved[token] = None
                else:
                    continue
                resolved += 1
        return resolved
