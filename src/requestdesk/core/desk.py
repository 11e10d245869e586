"""Assembly of the request desk components with an explicit lifecycle.

Construct one :class:`RequestDesk`, call :meth:`~RequestDesk.start` once
the event loop is running, and :meth:`~RequestDesk.stop` on shutdown.
Starting twice is harmless; the processor only ever runs one loop.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from requestdesk.agents.memory import InMemoryPlayoutAgent
from requestdesk.core.blocklist import ClientBlocklist
from requestdesk.core.clock import Clock, SystemClock, new_request_id
from requestdesk.core.config import RequestDeskConfig
from requestdesk.core.events import Event, EventBus
from requestdesk.core.intake import RequestIntake
from requestdesk.core.policy import EligibilityPolicy
from requestdesk.core.processor import ProcessorConfig, RequestProcessor
from requestdesk.core.store import RequestStore
from requestdesk.observability.metrics import RequestMetrics

if TYPE_CHECKING:
    from collections.abc import Callable

    from requestdesk.agents.base import PlayoutAgent
    from requestdesk.storage.base import RequestRepository

logger = logging.getLogger(__name__)


def build_repository(config: RequestDeskConfig) -> RequestRepository:
    """Create the repository selected by ``config.storage``."""
    if config.storage == "sqlite":
        from requestdesk.storage.sqlite import SQLiteRequestRepository

        return SQLiteRequestRepository(db_path=config.db_path)

    from requestdesk.storage.memory import InMemoryRequestRepository

    return InMemoryRequestRepository()


async def _log_event(event: Event) -> None:
    logger.debug("Processor event %s", event.event_type.value, extra=event.payload)


class RequestDesk:
    """Holds the request desk components for one process."""

    def __init__(
        self,
        config: RequestDeskConfig | None = None,
        agent: PlayoutAgent | None = None,
        repository: RequestRepository | None = None,
        clock: Clock | None = None,
        id_factory: Callable[[], str] = new_request_id,
    ) -> None:
        self.config = config or RequestDeskConfig()
        self.clock = clock or SystemClock()
        self.repository = repository if repository is not None else build_repository(self.config)
        if agent is None:
            logger.warning("No playout agent configured; requests will wait with no free slots")
            agent = InMemoryPlayoutAgent()
        self.agent = agent
        self.store = RequestStore(self.config, self.clock, self.repository, id_factory)
        self.policy = EligibilityPolicy(self.store, self.config)
        self.blocklist = ClientBlocklist(self.config.blocklist_path, self.clock)
        self.intake = RequestIntake(self.store, self.policy, self.blocklist)
        self.event_bus = EventBus()
        self.event_bus.subscribe_all(_log_event)
        self.metrics = RequestMetrics(self.store)
        self.metrics.attach(self.event_bus)
        self.processor = RequestProcessor(
            self.store,
            self.agent,
            ProcessorConfig.from_config(self.config),
            self.event_bus,
        )
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        await self.store.load()
        await self.processor.start()
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        await self.processor.stop()
        await self.store.flush()
        self.repository.close()
        self._started = False
