from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
import signal
from typing import Any, Optional

from dotenv import load_dotenv

from .config import Settings, load_settings
from .enforcement.appeals import AppealHandler
from .enforcement.config_schema import EnforcementConfig, resolve_config, validate_config
from .enforcement.models import AppealMessage, AppealOutcome
from .enforcement.orchestrator import CHECK_REMOVAL, CHECK_WARNING, EscalationOrchestrator
from .enforcement.records import EnforcementRepository
from .interfaces import ModerationPlatform, validate_platform
from .logging_setup import setup_logging
from .services.notifications import NotificationDispatcher
from .services.scheduler import AsyncioScheduler
from .services.state_store import MemoryStateStore, SQLiteStateStore, StateStore
from .services.stats import RuntimeStats

log = logging.getLogger("explainguard.runtime")


def load_enforcement_config(path: str) -> EnforcementConfig:
    """Read a JSON enforcement document; a missing path means defaults."""
    if not path:
        return resolve_config({})
    with open(path, encoding="utf-8") as f:
        doc: dict[str, Any] = json.load(f)
    for issue in validate_config(doc):
        log.warning("Config issue at %s: %s", issue.path, issue.message)
    return resolve_config(doc)


class EnforcementRuntime:
    """Wires store, platform, timers, webhooks and the orchestrator together.

    The host glue feeds events in through `on_item_submitted`,
    `on_annotation_created` and `on_appeal`; `start()` runs the periodic
    sweep (and polling, when enabled) in the background.
    """

    def __init__(
        self,
        settings: Settings,
        platform: ModerationPlatform,
        *,
        config: Optional[EnforcementConfig] = None,
        store: Optional[StateStore] = None,
    ) -> None:
        self.settings = settings
        self.platform = validate_platform(platform)
        self.stats = RuntimeStats()
        self.config = config or load_enforcement_config(settings.enforcement_config_path)
        if settings.sweep_limit > 0:
            self.config = dataclasses.replace(self.config, sweep_limit=settings.sweep_limit)

        if store is None:
            store = MemoryStateStore() if settings.state_backend == "memory" else SQLiteStateStore(settings.sqlite_path)
        self.store = store
        self.records = EnforcementRepository(store)

        self.dispatcher = NotificationDispatcher(self.current_config)
        self.scheduler = AsyncioScheduler(self.stats)
        self.orchestrator = EscalationOrchestrator(
            platform=self.platform,
            records=self.records,
            scheduler=self.scheduler,
            notifier=self.dispatcher,
            config_provider=self.current_config,
        )
        self.appeals = AppealHandler(self.orchestrator)
        self.scheduler.register(CHECK_WARNING, self.orchestrator.check_warning)
        self.scheduler.register(CHECK_REMOVAL, self.orchestrator.check_removal)

        self._tasks: list[asyncio.Task[None]] = []
        self._stop = asyncio.Event()

    def current_config(self) -> EnforcementConfig:
        return self.config

    def reload_config(self) -> EnforcementConfig:
        self.config = load_enforcement_config(self.settings.enforcement_config_path)
        if self.settings.sweep_limit > 0:
            self.config = dataclasses.replace(self.config, sweep_limit=self.settings.sweep_limit)
        log.info("Enforcement config reloaded")
        return self.config

    # -------------------- host events --------------------

    async def on_item_submitted(self, item_id: str) -> None:
        await self.orchestrator.on_item_submitted(item_id)

    async def on_annotation_created(self, item_id: str) -> None:
        if await self.orchestrator.check_for_explanation(item_id):
            self.stats.items_reinstated += 1

    async def on_appeal(self, message: AppealMessage) -> AppealOutcome:
        outcome = await self.appeals.handle(message)
        if outcome is AppealOutcome.REINSTATED:
            self.stats.items_reinstated += 1
        return outcome

    # -------------------- lifecycle --------------------

    async def start(self) -> None:
        if isinstance(self.store, SQLiteStateStore):
            directory = os.path.dirname(self.settings.sqlite_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            await self.store.init()

        self._stop.clear()
        self._tasks.append(asyncio.create_task(self._sweep_loop(), name="explainguard-sweep"))
        if self.config.polling_enabled:
            self._tasks.append(asyncio.create_task(self._poll_loop(), name="explainguard-poll"))
        log.info(
            "Runtime started (backend=%s sweep_every=%ss polling=%s)",
            self.settings.state_backend,
            self.settings.sweep_interval_seconds,
            self.config.polling_enabled,
        )

    async def stop(self) -> None:
        self._stop.set()
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.scheduler.stop()
        await self.dispatcher.close()
        log.info("Runtime stopped %s", self.stats.as_dict())

    async def _wait(self, seconds: int) -> bool:
        """Sleep unless stopped first; True means keep running."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def _sweep_loop(self) -> None:
        if not self.settings.sweep_on_start and not await self._wait(self.settings.sweep_interval_seconds):
            return
        while not self._stop.is_set():
            try:
                self.stats.items_reinstated += await self.orchestrator.sweep()
                self.stats.sweeps_run += 1
                if isinstance(self.store, MemoryStateStore):
                    self.store.prune()
                elif isinstance(self.store, SQLiteStateStore):
                    await self.store.prune()
            except Exception:
                log.exception("Sweep failed")
            if not await self._wait(self.settings.sweep_interval_seconds):
                return

    async def _poll_loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.stats.items_polled += await self.orchestrator.poll_new_items()
                self.stats.polls_run += 1
            except Exception:
                log.exception("Polling failed")
            if not await self._wait(self.settings.poll_interval_seconds):
                return


async def run(platform: ModerationPlatform) -> None:
    """Run until SIGINT/SIGTERM with settings from the environment (and `.env`)."""

    load_dotenv()
    settings = load_settings()
    setup_logging(settings.log_level)

    runtime = EnforcementRuntime(settings, platform)
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows / limited environments
            pass

    await stop_event.wait()
    log.info("Shutdown signal received")
    await runtime.stop()
