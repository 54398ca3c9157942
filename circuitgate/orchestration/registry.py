from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional

from circuitgate.core.config import BreakerConfig
from circuitgate.core.logging import EventLogger
from circuitgate.core.schemas import BreakerStatus
from circuitgate.orchestration.circuit_breaker import (
    CircuitBreaker,
    Clock,
    StateChangeHook,
    create_circuit_breaker,
)
from circuitgate.storage.state_store import StateStore


class BreakerRegistry:
    """Hands out one breaker per service key, all sharing a store."""

    def __init__(
        self,
        store: StateStore,
        on_state_change: Optional[StateChangeHook] = None,
        event_logger: Optional[EventLogger] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.store = store
        self.on_state_change = on_state_change
        self.event_logger = event_logger
        self.clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, service_key: str, config: BreakerConfig | None = None) -> CircuitBreaker:
        # An existing breaker keeps the config it was created with.
        with self._lock:
            breaker = self._breakers.get(service_key)
            if breaker is None:
                breaker = create_circuit_breaker(
                    service_key,
                    config,
                    self.store,
                    on_state_change=self.on_state_change,
                    event_logger=self.event_logger,
                    clock=self.clock,
                )
                self._breakers[service_key] = breaker
            return breaker

    def get(self, service_key: str) -> CircuitBreaker:
        return self._breakers[service_key]

    def exists(self, service_key: str) -> bool:
        return service_key in self._breakers

    def list(self) -> List[str]:
        return list(self._breakers.keys())

    def statuses(self) -> Dict[str, BreakerStatus]:
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}

    def configure(self, service_key: str, config: BreakerConfig) -> CircuitBreaker:
        """Like ``get_or_create``, but an existing breaker adopts ``config``."""
        breaker = self.get_or_create(service_key, config)
        if breaker.config != config:
            breaker.update_config(config)
        return breaker

    def retain(self, service_keys: Iterable[str]) -> None:
        keep = set(service_keys)
        with self._lock:
            for name in [name for name in self._breakers if name not in keep]:
                del self._breakers[name]
