from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from circuitgate.core.config import ConfigManager, StorageConfig
from circuitgate.core.errors import ConfigError
from circuitgate.core.logging import EventLogger
from circuitgate.core.schemas import AggregateStatus, BreakerStatus, StateChangeEvent
from circuitgate.orchestration.aggregator import AIServiceAggregator
from circuitgate.orchestration.circuit_breaker import Clock, StateChangeHook
from circuitgate.orchestration.executor import AIRequestExecutor
from circuitgate.orchestration.registry import BreakerRegistry
from circuitgate.storage.state_store import InMemoryStateStore, JsonFileStateStore, StateStore


class ServiceContext:
    def __init__(
        self,
        base_dir: Path,
        client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.base_dir = base_dir
        self.config_manager = ConfigManager(base_dir / "configs")
        self.logger = EventLogger(base_dir / "logs")
        self.client = client
        self.clock = clock
        self.store: Optional[StateStore] = None
        self.registry: Optional[BreakerRegistry] = None
        self.aggregator: Optional[AIServiceAggregator] = None
        self.executors: Dict[str, AIRequestExecutor] = {}
        self._storage: Optional[StorageConfig] = None
        self._listeners: List[StateChangeHook] = []

    def load(self) -> None:
        snapshot = self.config_manager.reload()
        # Breakers survive a reload so each key keeps a single live instance.
        # Only a storage change starts them over from the new store.
        if self.registry is None or snapshot.breakers.storage != self._storage:
            self.store = self._build_store(snapshot.breakers.storage)
            self._storage = snapshot.breakers.storage
            self.registry = BreakerRegistry(
                self.store,
                on_state_change=self._dispatch_state_change,
                event_logger=self.logger,
                clock=self.clock,
            )
        registry = self.registry
        for name, breaker_config in snapshot.breakers.breakers.items():
            registry.configure(name, breaker_config)
        registry.retain(snapshot.breakers.breakers)
        self.executors = {
            name: AIRequestExecutor.from_config(
                registry.get(name), snapshot.services, event_logger=self.logger, client=self.client
            )
            for name in snapshot.services.endpoints
        }
        self.aggregator = AIServiceAggregator(
            {name: registry.get(name) for name in registry.list()},
            snapshot.breakers.aggregate.providers,
        )

    def reload_config(self) -> None:
        self.load()

    def subscribe(self, hook: StateChangeHook) -> None:
        self._listeners.append(hook)

    def breaker_statuses(self) -> Dict[str, BreakerStatus]:
        if not self.registry:
            return {}
        return self.registry.statuses()

    def breaker_status(self, service_key: str) -> BreakerStatus | None:
        if not self.registry or not self.registry.exists(service_key):
            return None
        return self.registry.get(service_key).get_status()

    def reset_breaker(self, service_key: str) -> BreakerStatus | None:
        if not self.registry or not self.registry.exists(service_key):
            return None
        breaker = self.registry.get(service_key)
        breaker.reset()
        return breaker.get_status()

    def overall_status(self) -> AggregateStatus:
        if not self.aggregator:
            self.load()
        if not self.aggregator:
            raise ConfigError("Aggregator not loaded")
        return self.aggregator.overall_status()

    async def request(self, payload: Dict[str, Any], service: Optional[str] = None) -> Dict[str, Any]:
        """Send ``payload`` to ``service``, or to the first provider whose breaker admits calls.

        When every provider is open the primary is asked anyway, so the caller
        gets its ``ServiceUnavailable`` with the real cooldown.
        """
        if not self.aggregator:
            self.load()
        if not self.aggregator:
            raise ConfigError("Aggregator not loaded")
        name = service or self.aggregator.recommended_provider() or self.aggregator.primary
        executor = self.executors.get(name)
        if executor is None:
            raise ConfigError(f"No executor configured for {name}")
        return await executor.execute(payload)

    def _build_store(self, storage: StorageConfig) -> StateStore:
        if storage.backend == "memory":
            return InMemoryStateStore()
        path = Path(storage.path)
        if not path.is_absolute():
            path = self.base_dir / path
        return JsonFileStateStore(path)

    def _dispatch_state_change(self, event: StateChangeEvent) -> None:
        for hook in list(self._listeners):
            try:
                hook(event)
            except Exception as exc:  # noqa: BLE001
                self.logger.log("state_change_hook_failed", {
                    "service_key": event.service_key,
                    "kind": event.kind.value,
                    "error": str(exc),
                })


DEFAULT_CONTEXT: Optional[ServiceContext] = None


def get_context() -> ServiceContext:
    global DEFAULT_CONTEXT
    if DEFAULT_CONTEXT is None:
        DEFAULT_CONTEXT = ServiceContext(Path(__file__).resolve().parents[2])
        DEFAULT_CONTEXT.load()
    return DEFAULT_CONTEXT
