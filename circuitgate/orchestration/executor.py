from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from circuitgate.core.config import ServiceEndpoint, ServicesConfig, expand_env_vars
from circuitgate.core.errors import ProviderError, ServiceUnavailable
from circuitgate.core.logging import EventLogger
from circuitgate.orchestration.circuit_breaker import CircuitBreaker
from circuitgate.orchestration.errors import classify_exception, classify_message


class AIRequestExecutor:
    """POSTs JSON to one provider endpoint through that provider's breaker.

    Errors from the request reach the caller unchanged. The breaker records
    them, and this class only adds an event log line.
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        base_url: str,
        endpoint: ServiceEndpoint,
        timeout_s: float = 30.0,
        headers: Optional[Dict[str, str]] = None,
        event_logger: Optional[EventLogger] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.breaker = breaker
        self.url = expand_env_vars(base_url).rstrip("/") + endpoint.path
        self.timeout_s = timeout_s
        merged = dict(headers or {})
        merged.update(endpoint.headers)
        self.headers = {name: expand_env_vars(value) for name, value in merged.items()}
        self.event_logger = event_logger
        self._client = client

    @classmethod
    def from_config(
        cls,
        breaker: CircuitBreaker,
        services: ServicesConfig,
        event_logger: Optional[EventLogger] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> "AIRequestExecutor":
        endpoint = services.endpoints.get(breaker.service_key)
        if endpoint is None:
            raise ProviderError(f"No endpoint configured for {breaker.service_key}")
        return cls(
            breaker,
            services.base_url,
            endpoint,
            timeout_s=services.timeout_s,
            headers=services.headers,
            event_logger=event_logger,
            client=client,
        )

    @property
    def service_key(self) -> str:
        return self.breaker.service_key

    async def execute(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            data = await self.breaker.execute(lambda: self._send(payload))
        except ServiceUnavailable as exc:
            self._log("request_rejected", {"retry_in_s": exc.retry_in_s, "reason": exc.reason})
            raise
        except Exception as exc:
            self._log("request_failed", {
                "error_type": classify_exception(exc).value,
                "error": str(exc),
                "failure_count": self.breaker.failure_count,
                "state": self.breaker.state.value,
            })
            raise
        self._log("request_succeeded", {"state": self.breaker.state.value})
        return data

    async def _send(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._client is not None:
            response = await self._client.post(
                self.url, json=payload, headers=self.headers, timeout=self.timeout_s
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.url, json=payload, headers=self.headers, timeout=self.timeout_s
                )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ProviderError(f"Unexpected response from {self.service_key}")
        # Edge functions can report failure in-band with a 2xx status.
        error = data.get("error")
        if error or data.get("success") is False:
            message = error.get("message") if isinstance(error, dict) else error
            message = str(message or f"{self.service_key} reported failure")
            raise ProviderError(message, classify_message(message))
        return data

    def _log(self, event: str, payload: Dict[str, Any]) -> None:
        if self.event_logger:
            self.event_logger.log(event, {"service_key": self.service_key, **payload})
