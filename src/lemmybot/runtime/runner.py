from __future__ import annotations

import asyncio
import functools
import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

from ..lemmy_client import build_request
from .actions import BotActions
from .categories import CATEGORY_SPECS, CategorySpec, ResourceCategory, categories_for_op, get_spec
from .config import BotConfig, load_config
from .connection import ConnectionManager
from .correlator import DEFAULT_MAX_ATTEMPTS, DEFAULT_POLL_SECONDS, PendingOperationCorrelator
from .dispatcher import EntryDispatcher, Handler, HandlerOptions, parse_handlers
from .federation import FederationFilter
from .logging_utils import setup_logging
from .scheduler import PollingScheduler, ScheduledFetchTask
from .storage import DedupStore
from .ui import print_runtime_banner


class LemmyBot:
    """One bot runtime: connection, polling, dedup store and handler dispatch.

    All shared state lives on the instance, so several bots can run in one
    process.
    """

    def __init__(
        self,
        cfg: BotConfig,
        handlers: Optional[Mapping[Any, Union[Handler, HandlerOptions]]] = None,
        *,
        logger=None,
        connect=None,
        on_connection_failed=None,
        on_connection_error=None,
        correlator_poll_seconds: float = DEFAULT_POLL_SECONDS,
        correlator_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        self.cfg = cfg
        self.logger = logger or logging.getLogger("lemmybot.runtime")
        self.handlers = parse_handlers(handlers)
        self.store = DedupStore(cfg.db_path)
        self.federation = FederationFilter(cfg.instance, cfg.federation)
        self.connection = ConnectionManager(
            cfg.instance,
            credentials=cfg.credentials,
            on_frame=self.handle_frame,
            on_connected=self._on_connected,
            logger=self.logger,
            minutes_before_retry_connection=cfg.minutes_before_retry_connection,
            on_connection_failed=on_connection_failed,
            on_connection_error=on_connection_error,
            connect=connect,
        )
        self.correlator = PendingOperationCorrelator(
            is_connected=lambda: self.connection.connected,
            logger=self.logger,
            poll_seconds=correlator_poll_seconds,
            max_attempts=correlator_max_attempts,
        )
        self.actions = BotActions(self.connection, self.correlator, self.logger)
        self.dispatcher = EntryDispatcher(
            self.store,
            self.handlers,
            self.actions,
            self.logger,
            default_minutes_until_reprocess=cfg.minutes_until_reprocess,
        )
        self.scheduler = PollingScheduler(self.connection, self.issue_fetch, self.logger)
        self._batches: Set[asyncio.Task] = set()
        self._db_ready = False
        self.routes: Dict[str, Callable[[Dict[str, Any]], None]] = self._build_routes()

    def _build_routes(self) -> Dict[str, Callable[[Dict[str, Any]], None]]:
        routes: Dict[str, Callable[[Dict[str, Any]], None]] = {
            "Login": self._on_login,
            "GetPost": self._on_single_post,
            "GetComment": self._on_single_comment,
            "GetCommunity": self._on_single_community,
            "Search": self._on_search,
        }
        for spec in CATEGORY_SPECS.values():
            routes.setdefault(spec.op, functools.partial(self._on_item_list, spec.op))
        return routes

    # Lifecycle

    async def start(self) -> bool:
        return await self.connection.start()

    async def stop(self) -> None:
        self.scheduler.stop()
        await self.connection.stop()

    async def run(self) -> None:
        """Connect and keep running until stop() or a fatal login error."""
        await self.start()
        try:
            await self.connection.wait_closed()
        finally:
            self.scheduler.stop()

    def setup_storage(self) -> None:
        if not self._db_ready:
            self.store.setup(self.logger)
            self._db_ready = True

    def scheduled_tasks(self) -> List[ScheduledFetchTask]:
        tasks: List[ScheduledFetchTask] = []
        for category, options in self.handlers.items():
            spec = get_spec(category)
            if spec.requires_auth and self.cfg.credentials is None:
                self.logger.warning("Skipping category=%s reason=requires_login", category.value)
                continue
            interval = options.seconds_between_polls or self.cfg.seconds_between_polls
            tasks.append(ScheduledFetchTask(category=category, interval_seconds=float(interval)))
        return tasks

    async def _on_connected(self) -> None:
        self.setup_storage()
        self.scheduler.start(self.scheduled_tasks())

    def issue_fetch(self, category: ResourceCategory) -> None:
        spec = get_spec(category)
        options = self.handlers.get(spec.category)
        self.connection.send(
            build_request(
                spec.op,
                spec.fetch_params(
                    auth=self.connection.auth,
                    listing_type=self.federation.listing_type,
                    limit=self.cfg.fetch_limit,
                    sort=options.sort if options else None,
                ),
            )
        )

    # Inbound routing

    async def handle_frame(self, text: str) -> None:
        try:
            response = json.loads(text)
        except ValueError as e:
            self.logger.warning("Ignoring malformed frame error=%s", e)
            return
        if not isinstance(response, dict):
            self.logger.warning("Ignoring non-object frame type=%s", type(response).__name__)
            return
        op = response.get("op")
        error = response.get("error")
        if error:
            self.connection.handle_service_error(str(error), op)
            return
        route = self.routes.get(op)
        if route is None:
            self.logger.debug("Ignoring frame op=%s", op)
            return
        data = response.get("data")
        route(data if isinstance(data, dict) else {})

    def _on_login(self, data: Dict[str, Any]) -> None:
        self.connection.mark_authenticated(data.get("jwt"))

    def _on_single_post(self, data: Dict[str, Any]) -> None:
        view = data.get("post_view") or {}
        self._record_arrival("post", (view.get("post") or {}).get("id"), view)

    def _on_single_comment(self, data: Dict[str, Any]) -> None:
        view = data.get("comment_view") or {}
        self._record_arrival("comment", (view.get("comment") or {}).get("id"), view)

    def _on_single_community(self, data: Dict[str, Any]) -> None:
        view = data.get("community_view") or {}
        self._record_arrival("community", (view.get("community") or {}).get("id"), data)

    def _record_arrival(self, kind: str, item_id: Any, item: Dict[str, Any]) -> None:
        if not self.correlator.record_arrival(kind, item_id, item):
            self.logger.debug("Unrequested %s arrival id=%s", kind, item_id)

    def _on_search(self, data: Dict[str, Any]) -> None:
        self.correlator.record_search_results(data)

    def _on_item_list(self, op: str, data: Dict[str, Any]) -> None:
        for spec in categories_for_op(op):
            if spec.category not in self.handlers:
                continue
            items = spec.extract_items(data)
            if not items:
                continue
            items = self.federation.filter(items, spec.actor_id)
            if items:
                self._spawn_batch(spec, items)

    def _spawn_batch(self, spec: CategorySpec, items: List[Dict[str, Any]]) -> asyncio.Task:
        task = asyncio.create_task(self.dispatcher.dispatch(spec.category, items, spec.item_id))
        self._batches.add(task)
        task.add_done_callback(functools.partial(self._batch_done, spec.category))
        return task

    def _batch_done(self, category: ResourceCategory, task: asyncio.Task) -> None:
        self._batches.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error("Handler failed category=%s error=%s", category.value, error, exc_info=error)

    async def drain(self) -> None:
        """Wait for every dispatch batch currently running."""
        while self._batches:
            await asyncio.gather(*list(self._batches), return_exceptions=True)


def run_bot(
    handlers: Mapping[Any, Union[Handler, HandlerOptions]],
    cfg: Optional[BotConfig] = None,
) -> None:
    cfg = cfg or load_config()
    logger = setup_logging(cfg)
    print_runtime_banner(cfg, [ResourceCategory(c).value for c in handlers])
    logger.info(
        (
            "Bot starting instance=%s logged_in=%s db_path=%s seconds_between_polls=%s "
            "minutes_before_retry_connection=%s minutes_until_reprocess=%s"
        ),
        cfg.instance,
        cfg.credentials is not None,
        cfg.db_path or ":memory:",
        cfg.seconds_between_polls,
        cfg.minutes_before_retry_connection,
        cfg.minutes_until_reprocess,
    )
    if cfg.log_path:
        logger.info("File logging enabled path=%s", cfg.log_path)
    bot = LemmyBot(cfg, handlers, logger=logger)
    asyncio.run(bot.run())
