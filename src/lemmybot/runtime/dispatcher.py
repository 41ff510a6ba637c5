from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Union

from .categories import ResourceCategory
from .reprocess import ReprocessDirective, should_process
from .storage import DedupStore, StoreSession


@dataclass
class HandlerContext:
    category: ResourceCategory
    item: Dict[str, Any]
    actions: Any
    directive: ReprocessDirective

    def reprocess(self, minutes: float) -> None:
        """Allow the item to be handled again once `minutes` have passed."""
        self.directive.reprocess(minutes)

    def prevent_reprocess(self) -> None:
        """Never handle this item again, whatever the configured default."""
        self.directive.prevent_reprocess()


Handler = Callable[[HandlerContext], Union[None, Awaitable[None]]]


@dataclass
class HandlerOptions:
    handle: Handler
    seconds_between_polls: Optional[float] = None
    minutes_until_reprocess: Optional[float] = None
    sort: Optional[str] = None


def parse_handlers(
    handlers: Optional[Mapping[Any, Union[Handler, HandlerOptions]]],
) -> Dict[ResourceCategory, HandlerOptions]:
    out: Dict[ResourceCategory, HandlerOptions] = {}
    for key, value in (handlers or {}).items():
        category = ResourceCategory(key)
        if isinstance(value, HandlerOptions):
            out[category] = value
        elif callable(value):
            out[category] = HandlerOptions(handle=value)
        else:
            raise TypeError(f"Handler for {category.value} must be callable or HandlerOptions")
    return out


class EntryDispatcher:
    """Runs handlers for fetched items the dedup store says are due.

    One store session per batch; items in a batch run concurrently; an id
    already being handled in its category is skipped.
    """

    def __init__(
        self,
        store: DedupStore,
        handlers: Dict[ResourceCategory, HandlerOptions],
        actions: Any,
        logger,
        default_minutes_until_reprocess: Optional[float] = None,
    ):
        self.store = store
        self.handlers = handlers
        self.actions = actions
        self.logger = logger
        self.default_minutes_until_reprocess = default_minutes_until_reprocess
        self._in_flight: Dict[ResourceCategory, Set[int]] = {}

    def in_flight(self, category: ResourceCategory) -> Set[int]:
        return self._in_flight.setdefault(ResourceCategory(category), set())

    def _default_minutes(self, options: HandlerOptions) -> Optional[float]:
        if options.minutes_until_reprocess is not None:
            return options.minutes_until_reprocess
        return self.default_minutes_until_reprocess

    async def dispatch(
        self,
        category: ResourceCategory,
        items: List[Dict[str, Any]],
        item_id: Callable[[Dict[str, Any]], Optional[int]],
    ) -> int:
        """Handle every eligible item; returns how many handlers completed.

        The first handler error is re-raised after the rest of the batch has
        finished.
        """
        category = ResourceCategory(category)
        options = self.handlers.get(category)
        if options is None or not items:
            return 0
        with self.store.session(category) as session:
            results = await asyncio.gather(
                *(self._dispatch_one(session, category, options, item, item_id(item)) for item in items),
                return_exceptions=True,
            )
        errors = [r for r in results if isinstance(r, BaseException)]
        handled = sum(1 for r in results if r is True)
        if handled or errors:
            self.logger.info(
                "Dispatched category=%s items=%s handled=%s errors=%s",
                category.value,
                len(items),
                handled,
                len(errors),
            )
        if errors:
            raise errors[0]
        return handled

    async def _dispatch_one(
        self,
        session: StoreSession,
        category: ResourceCategory,
        options: HandlerOptions,
        item: Dict[str, Any],
        item_id: Optional[int],
    ) -> bool:
        if item_id is None:
            self.logger.debug("Skipping item without id category=%s", category.value)
            return False
        in_flight = self.in_flight(category)
        if item_id in in_flight:
            return False
        in_flight.add(item_id)
        try:
            if not should_process(session.get_storage_info(item_id)):
                return False
            directive = ReprocessDirective(self._default_minutes(options))
            result = options.handle(
                HandlerContext(category=category, item=item, actions=self.actions, directive=directive)
            )
            if inspect.isawaitable(result):
                await result
            session.upsert(item_id, directive.minutes)
            return True
        finally:
            in_flight.discard(item_id)
