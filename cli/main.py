from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import httpx
import typer

from circuitgate.core.config import ConfigManager
from circuitgate.core.service import ServiceContext

app = typer.Typer(help="circuitgate breaker operations CLI")
configs_app = typer.Typer()


def _base_dir() -> Path:
    return Path(__file__).resolve().parents[1]


def _api_url(api: Optional[str]) -> str:
    return api or "http://127.0.0.1:8000"


def _local_context() -> ServiceContext:
    ctx = ServiceContext(_base_dir())
    ctx.load()
    return ctx


def _echo(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=True))


@app.command()
def status(
    service_key: Optional[str] = typer.Argument(None),
    api: Optional[str] = typer.Option(None, "--api"),
    local: bool = typer.Option(False, "--local"),
) -> None:
    if local:
        ctx = _local_context()
        if service_key:
            breaker_status = ctx.breaker_status(service_key)
            if not breaker_status:
                raise typer.Exit(code=1)
            _echo(breaker_status.model_dump(mode="json"))
            return
        _echo({name: item.model_dump(mode="json") for name, item in ctx.breaker_statuses().items()})
        return
    url = _api_url(api) + (f"/breakers/{service_key}" if service_key else "/breakers")
    response = httpx.get(url)
    response.raise_for_status()
    _echo(response.json())


@app.command()
def reset(
    service_key: str,
    api: Optional[str] = typer.Option(None, "--api"),
    local: bool = typer.Option(False, "--local"),
) -> None:
    if local:
        ctx = _local_context()
        breaker_status = ctx.reset_breaker(service_key)
        if not breaker_status:
            raise typer.Exit(code=1)
        _echo(breaker_status.model_dump(mode="json"))
        return
    url = _api_url(api) + f"/breakers/{service_key}/reset"
    response = httpx.post(url)
    response.raise_for_status()
    _echo(response.json())


@app.command()
def health(
    api: Optional[str] = typer.Option(None, "--api"),
    local: bool = typer.Option(False, "--local"),
) -> None:
    if local:
        _echo(_local_context().overall_status().model_dump(mode="json"))
        return
    url = _api_url(api) + "/health/services"
    response = httpx.get(url)
    response.raise_for_status()
    _echo(response.json())


@configs_app.command("validate")
def configs_validate() -> None:
    manager = ConfigManager(_base_dir() / "configs")
    manager.validate()
    typer.echo("configs_ok")


app.add_typer(configs_app, name="configs")


if __name__ == "__main__":
    app()
