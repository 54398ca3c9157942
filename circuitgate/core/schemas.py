from __future__ import annotations

from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from circuitgate.core.config import BreakerConfig


class CircuitState(str, Enum):
    closed = "CLOSED"
    open = "OPEN"
    half_open = "HALF_OPEN"


class BreakerState(BaseModel):
    """Persisted breaker record, stored with camelCase keys."""

    model_config = ConfigDict(populate_by_name=True)

    state: CircuitState = CircuitState.closed
    failure_count: int = Field(default=0, ge=0, alias="failureCount")
    last_failure_time: int = Field(default=0, ge=0, alias="lastFailureTime")
    next_attempt_time: int = Field(default=0, ge=0, alias="nextAttemptTime")

    def to_record(self) -> Dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)


class BreakerStatus(BaseModel):
    service_key: str
    state: CircuitState
    failure_count: int
    is_healthy: bool
    time_until_retry: int
    last_failure_time: int
    config: BreakerConfig


class StateChangeKind(str, Enum):
    opened = "opened"
    reopened = "reopened"
    half_open = "half_open"
    recovered = "recovered"
    reset = "reset"


class StateChangeEvent(BaseModel):
    service_key: str
    kind: StateChangeKind
    previous_state: CircuitState
    state: CircuitState
    failure_count: int
    next_attempt_time: int
    occurred_at: int


class OverallHealth(str, Enum):
    healthy = "healthy"
    degraded = "degraded"
    down = "down"


class Recommendations(BaseModel):
    use_backup: bool
    show_fallback: bool
    show_warning: bool
    recommended_provider: Optional[str] = None


class AggregateStatus(BaseModel):
    overall: OverallHealth
    services: Dict[str, BreakerStatus]
    recommendations: Recommendations
