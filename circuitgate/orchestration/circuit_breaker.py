from __future__ import annotations

import math
import time
from typing import Awaitable, Callable, Optional, TypeVar

from pydantic import ValidationError

from circuitgate.core.config import BreakerConfig
from circuitgate.core.errors import ServiceUnavailable
from circuitgate.core.logging import EventLogger
from circuitgate.core.schemas import (
    BreakerState,
    BreakerStatus,
    CircuitState,
    StateChangeEvent,
    StateChangeKind,
)
from circuitgate.storage.state_store import StateStore, state_key

T = TypeVar("T")

Clock = Callable[[], int]
StateChangeHook = Callable[[StateChangeEvent], None]

# Applied to the base reset timeout when a half-open probe fails. Fixed, not compounding.
HALF_OPEN_BACKOFF_FACTOR = 2


def now_ms() -> int:
    return int(time.time() * 1000)


class CircuitBreaker:
    """Three-state breaker guarding one service key.

    State is read from ``store`` once, on construction, and written back after
    every mutation. Time only moves the breaker when a caller asks: an OPEN
    breaker becomes HALF_OPEN inside ``is_operation_allowed`` once
    ``next_attempt_time`` has passed. There are no background timers.

    While HALF_OPEN only one probe may be in flight; concurrent callers are
    rejected until it settles.
    """

    def __init__(
        self,
        service_key: str,
        config: BreakerConfig,
        store: StateStore,
        on_state_change: Optional[StateChangeHook] = None,
        event_logger: Optional[EventLogger] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._service_key = service_key
        self._config = config
        self._store = store
        self._on_state_change = on_state_change
        self._event_logger = event_logger
        self._clock = clock or now_ms
        self._probe_in_flight = False
        self._state = self._load()

    @property
    def service_key(self) -> str:
        return self._service_key

    @property
    def config(self) -> BreakerConfig:
        return self._config

    @property
    def state(self) -> CircuitState:
        return self._state.state

    @property
    def failure_count(self) -> int:
        return self._state.failure_count

    @property
    def last_failure_time(self) -> int:
        return self._state.last_failure_time

    @property
    def next_attempt_time(self) -> int:
        return self._state.next_attempt_time

    def compute_allowed(self, now: Optional[int] = None) -> bool:
        """Answer whether an operation would be admitted, without changing state."""
        if self._state.state == CircuitState.open:
            current = self._clock() if now is None else now
            return current >= self._state.next_attempt_time
        if self._state.state == CircuitState.half_open:
            return not self._probe_in_flight
        return True

    def is_operation_allowed(self) -> bool:
        """Admission check that also performs the lazy OPEN to HALF_OPEN move.

        HALF_OPEN answers False while its one probe is still in flight.
        """
        current = self._state
        if current.state == CircuitState.open and self._clock() >= current.next_attempt_time:
            self._save(current.model_copy(update={"state": CircuitState.half_open}))
            self._emit(StateChangeKind.half_open, current.state)
        if self._state.state == CircuitState.half_open:
            return not self._probe_in_flight
        return self._state.state != CircuitState.open

    def update_config(self, config: BreakerConfig) -> None:
        """Swap thresholds in place; the current state and any probe in flight are kept."""
        self._config = config

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        if not self.is_operation_allowed():
            if self._state.state == CircuitState.half_open:
                raise ServiceUnavailable(self._service_key, 0, reason="recovery probe in progress")
            raise ServiceUnavailable(self._service_key, self._retry_in_s())
        probe = self._state.state == CircuitState.half_open
        if probe:
            self._probe_in_flight = True
        try:
            result = await operation()
        except Exception as exc:
            self.record_failure(exc)
            raise
        finally:
            if probe:
                self._probe_in_flight = False
        self.record_success()
        return result

    def record_success(self) -> None:
        current = self._state
        if current.state == CircuitState.half_open:
            self._save(BreakerState())
            self._emit(StateChangeKind.recovered, current.state)
        elif current.failure_count > 0:
            self._save(current.model_copy(update={"failure_count": 0}))

    def record_failure(self, error: BaseException) -> None:
        now = self._clock()
        current = self._state
        failure_count = current.failure_count + 1
        state = current.state
        next_attempt_time = current.next_attempt_time
        kind: Optional[StateChangeKind] = None

        if current.state == CircuitState.closed and failure_count >= self._config.failure_threshold:
            state = CircuitState.open
            next_attempt_time = now + self._config.reset_timeout_ms
            kind = StateChangeKind.opened
        elif current.state == CircuitState.half_open:
            state = CircuitState.open
            next_attempt_time = now + self._config.reset_timeout_ms * HALF_OPEN_BACKOFF_FACTOR
            kind = StateChangeKind.reopened

        self._save(
            BreakerState(
                state=state,
                failure_count=failure_count,
                last_failure_time=now,
                next_attempt_time=next_attempt_time,
            )
        )
        self._log("failure_recorded", {
            "service_key": self._service_key,
            "error": str(error),
            "failure_count": failure_count,
            "state": state.value,
            "threshold": self._config.failure_threshold,
        })
        if kind:
            self._emit(kind, current.state)

    def get_status(self) -> BreakerStatus:
        current = self._state
        time_until_retry = 0
        if current.state == CircuitState.open:
            time_until_retry = max(0, current.next_attempt_time - self._clock())
        return BreakerStatus(
            service_key=self._service_key,
            state=current.state,
            failure_count=current.failure_count,
            is_healthy=current.state == CircuitState.closed and current.failure_count == 0,
            time_until_retry=time_until_retry,
            last_failure_time=current.last_failure_time,
            config=self._config,
        )

    def reset(self) -> None:
        previous = self._state.state
        self._probe_in_flight = False
        self._save(BreakerState())
        self._emit(StateChangeKind.reset, previous)

    def _retry_in_s(self) -> int:
        remaining = max(0, self._state.next_attempt_time - self._clock())
        return math.ceil(remaining / 1000)

    def _load(self) -> BreakerState:
        record = self._store.get(state_key(self._service_key))
        if record is None:
            return BreakerState()
        try:
            return BreakerState.model_validate(record)
        except ValidationError as exc:
            self._log("state_load_failed", {"service_key": self._service_key, "error": str(exc)})
            return BreakerState()

    def _save(self, state: BreakerState) -> None:
        self._store.set(state_key(self._service_key), state.to_record())
        self._state = state

    def _emit(self, kind: StateChangeKind, previous: CircuitState) -> None:
        event = StateChangeEvent(
            service_key=self._service_key,
            kind=kind,
            previous_state=previous,
            state=self._state.state,
            failure_count=self._state.failure_count,
            next_attempt_time=self._state.next_attempt_time,
            occurred_at=self._clock(),
        )
        self._log("state_change", event.model_dump(mode="json"))
        if not self._on_state_change:
            return
        # Subscribers must not change what the guarded operation returned or raised.
        try:
            self._on_state_change(event)
        except Exception as exc:  # noqa: BLE001
            self._log("state_change_hook_failed", {
                "service_key": self._service_key,
                "kind": kind.value,
                "error": str(exc),
            })

    def _log(self, event: str, payload: dict) -> None:
        if self._event_logger:
            self._event_logger.log(event, payload)


def create_circuit_breaker(
    service_key: str,
    config: BreakerConfig | None,
    store: StateStore,
    on_state_change: Optional[StateChangeHook] = None,
    event_logger: Optional[EventLogger] = None,
    clock: Optional[Clock] = None,
) -> CircuitBreaker:
    return CircuitBreaker(
        service_key,
        config or BreakerConfig(),
        store,
        on_state_change=on_state_change,
        event_logger=event_logger,
        clock=clock,
    )
