from enum import Enum


class ErrorType(str, Enum):
    timeout = "timeout"
    quota = "quota"
    auth = "auth"
    transient = "transient"
    unsupported = "unsupported"
    server_down = "server_down"
    unknown = "unknown"


class CircuitGateError(Exception):
    pass


class ServiceUnavailable(CircuitGateError):
    """Raised by a breaker that refuses to run an operation."""

    def __init__(self, service_key: str, retry_in_s: int, reason: str | None = None) -> None:
        message = f"Service {service_key} is temporarily unavailable. Retry in {retry_in_s} {_seconds(retry_in_s)}."
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.service_key = service_key
        self.retry_in_s = retry_in_s
        self.reason = reason


class ProviderError(CircuitGateError):
    def __init__(self, message: str, error_type: ErrorType = ErrorType.unknown) -> None:
        super().__init__(message)
        self.error_type = error_type


class ConfigError(CircuitGateError):
    pass


class StateStoreError(CircuitGateError):
    pass


def _seconds(value: int) -> str:
    return "second" if value == 1 else "seconds"
