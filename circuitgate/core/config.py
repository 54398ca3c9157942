from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

from circuitgate.core.errors import ConfigError

PLACEHOLDER_RE = re.compile(r"\$\{([^}]+)\}")


class BreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout_ms: int = Field(default=60000, ge=1)
    monitoring_period_ms: int = Field(default=300000, ge=1)


class AggregateConfig(BaseModel):
    # Priority order, primary first.
    providers: List[str] = Field(min_length=1)


class StorageConfig(BaseModel):
    backend: Literal["file", "memory"] = "file"
    path: str = "state/circuit_breakers.json"


class BreakersConfig(BaseModel):
    breakers: Dict[str, BreakerConfig]
    aggregate: AggregateConfig
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @model_validator(mode="after")
    def _providers_are_configured(self) -> "BreakersConfig":
        missing = [name for name in self.aggregate.providers if name not in self.breakers]
        if missing:
            raise ValueError(f"aggregate providers without breaker config: {', '.join(missing)}")
        return self


class ServiceEndpoint(BaseModel):
    path: str
    headers: Dict[str, str] = Field(default_factory=dict)


class ServicesConfig(BaseModel):
    base_url: str
    timeout_s: float = Field(default=30.0, gt=0)
    headers: Dict[str, str] = Field(default_factory=dict)
    endpoints: Dict[str, ServiceEndpoint] = Field(default_factory=dict)


@dataclass
class ConfigSnapshot:
    breakers: BreakersConfig
    services: ServicesConfig


class ConfigManager:
    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir
        self._snapshot: Optional[ConfigSnapshot] = None

    def snapshot(self) -> ConfigSnapshot:
        if self._snapshot is None:
            self.reload()
        if self._snapshot is None:
            raise ConfigError("Config snapshot not loaded")
        return self._snapshot

    def reload(self) -> ConfigSnapshot:
        breakers = self._load_yaml(self.base_dir / "breakers.yml", BreakersConfig)
        services = self._load_yaml(self.base_dir / "services.yml", ServicesConfig)
        self._check_endpoints(breakers, services)
        self._check_placeholders(services)
        self._snapshot = ConfigSnapshot(breakers=breakers, services=services)
        return self._snapshot

    def validate(self) -> None:
        self.reload()

    @staticmethod
    def _check_endpoints(breakers: BreakersConfig, services: ServicesConfig) -> None:
        unknown = [name for name in services.endpoints if name not in breakers.breakers]
        if unknown:
            raise ConfigError(f"Endpoints without breaker config: {', '.join(unknown)}")
        missing = [name for name in breakers.aggregate.providers if name not in services.endpoints]
        if missing:
            raise ConfigError(f"Providers without endpoint: {', '.join(missing)}")

    @staticmethod
    def _check_placeholders(services: ServicesConfig) -> None:
        values = [services.base_url, *services.headers.values()]
        for endpoint in services.endpoints.values():
            values.extend([endpoint.path, *endpoint.headers.values()])
        unresolved = sorted({name for value in values for name in unresolved_env_vars(value)})
        if unresolved:
            raise ConfigError(f"Unset environment variables in services config: {', '.join(unresolved)}")

    @staticmethod
    def _load_yaml(path: Path, model: type[BaseModel]) -> BaseModel:
        if not path.exists():
            raise ConfigError(f"Missing config file: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except Exception as exc:  # noqa: BLE001
            raise ConfigError(f"Invalid YAML: {path}: {exc}") from exc
        try:
            return model.model_validate(data)
        except Exception as exc:  # noqa: BLE001
            raise ConfigError(f"Schema validation failed for {path}: {exc}") from exc


def expand_env_vars(value: str) -> str:
    if "${" not in value:
        return value
    for key, env_value in os.environ.items():
        value = value.replace(f"${{{key}}}", env_value)
    return value


def unresolved_env_vars(value: str) -> List[str]:
    """Names of ``${VAR}`` placeholders still present after expansion."""
    return PLACEHOLDER_RE.findall(expand_env_vars(value))
