from __future__ import annotations

from typing import List, Mapping, Optional, Sequence

from circuitgate.core.errors import ConfigError
from circuitgate.core.schemas import AggregateStatus, OverallHealth, Recommendations
from circuitgate.orchestration.circuit_breaker import CircuitBreaker


class AIServiceAggregator:
    """Folds several breakers into one health signal.

    ``providers`` lists the interchangeable AI backends in priority order; only
    they decide whether anything is still available. Every breaker, provider or
    not, counts toward ``healthy``. Reads go through ``compute_allowed`` so
    asking for health never moves a breaker to HALF_OPEN.
    """

    def __init__(self, breakers: Mapping[str, CircuitBreaker], providers: Sequence[str]) -> None:
        if not providers:
            raise ConfigError("Aggregator needs at least one provider")
        missing = [name for name in providers if name not in breakers]
        if missing:
            raise ConfigError(f"Unknown providers: {', '.join(missing)}")
        self.breakers = dict(breakers)
        self.providers: List[str] = list(providers)

    @property
    def primary(self) -> str:
        return self.providers[0]

    def available_providers(self) -> List[str]:
        return [name for name in self.providers if self.breakers[name].compute_allowed()]

    def recommended_provider(self) -> Optional[str]:
        available = self.available_providers()
        return available[0] if available else None

    def overall_status(self) -> AggregateStatus:
        statuses = {name: breaker.get_status() for name, breaker in self.breakers.items()}
        all_healthy = all(status.is_healthy for status in statuses.values())
        available = self.available_providers()
        any_available = bool(available)

        if all_healthy:
            overall = OverallHealth.healthy
        elif any_available:
            overall = OverallHealth.degraded
        else:
            overall = OverallHealth.down

        return AggregateStatus(
            overall=overall,
            services=statuses,
            recommendations=Recommendations(
                use_backup=self.primary not in available and any_available,
                show_fallback=not any_available,
                show_warning=not all_healthy and any_available,
                recommended_provider=available[0] if available else None,
            ),
        )
