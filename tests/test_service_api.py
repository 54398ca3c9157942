import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from circuitgate.core import service
from circuitgate.core.errors import ServiceUnavailable
from circuitgate.core.schemas import StateChangeKind
from circuitgate.core.service import ServiceContext
from circuitgate.main import app

BREAKERS = """
breakers:
  openai:
    failure_threshold: 1
    reset_timeout_ms: 30000
  gemini:
    failure_threshold: 1
    reset_timeout_ms: 45000
  unified-ai:
    failure_threshold: 5
    reset_timeout_ms: 60000
aggregate:
  providers: [openai, gemini]
storage:
  backend: file
  path: state/breakers.json
"""

SERVICES = """
base_url: "https://example.supabase.co"
endpoints:
  openai:
    path: /functions/v1/advanced-ai-coaching
  gemini:
    path: /functions/v1/gemini-research
  unified-ai:
    path: /functions/v1/unified-ai-orchestrator
"""


def handler(request):
    if request.url.path.endswith("advanced-ai-coaching"):
        return httpx.Response(502)
    return httpx.Response(200, json={"success": True, "provider": request.url.path.rsplit("/", 1)[-1]})


def make_context(tmp_path, clock=None, transport_handler=handler):
    configs = tmp_path / "configs"
    configs.mkdir()
    (configs / "breakers.yml").write_text(BREAKERS, encoding="utf-8")
    (configs / "services.yml").write_text(SERVICES, encoding="utf-8")
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport_handler))
    ctx = ServiceContext(tmp_path, client=client, clock=clock or (lambda: 2_000_000))
    ctx.load()
    return ctx


def test_request_falls_back_after_primary_opens(tmp_path):
    ctx = make_context(tmp_path)
    events = []
    ctx.subscribe(events.append)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(ctx.request({"message": "hej"}))
    assert [event.kind for event in events] == [StateChangeKind.opened]

    data = asyncio.run(ctx.request({"message": "hej"}))
    assert data["provider"] == "gemini-research"
    assert ctx.overall_status().recommendations.use_backup is True


def test_request_with_every_provider_open_raises_service_unavailable(tmp_path):
    ctx = make_context(tmp_path)
    ctx.registry.get("openai").record_failure(RuntimeError("down"))
    ctx.registry.get("gemini").record_failure(RuntimeError("down"))
    with pytest.raises(ServiceUnavailable) as excinfo:
        asyncio.run(ctx.request({}))
    assert excinfo.value.service_key == "openai"
    assert excinfo.value.retry_in_s == 30


def test_state_persists_across_reload(tmp_path):
    ctx = make_context(tmp_path)
    ctx.registry.get("openai").record_failure(RuntimeError("down"))
    assert (tmp_path / "state" / "breakers.json").exists()

    fresh = ServiceContext(tmp_path, clock=lambda: 2_000_000)
    fresh.load()
    assert fresh.breaker_status("openai").state.value == "OPEN"


def test_api_status_and_reset(tmp_path, monkeypatch):
    ctx = make_context(tmp_path)
    monkeypatch.setattr(service, "DEFAULT_CONTEXT", ctx)
    ctx.registry.get("openai").record_failure(RuntimeError("down"))
    client = TestClient(app)

    assert client.get("/health").json() == {"status": "ok"}

    body = client.get("/breakers/openai").json()
    assert body["state"] == "OPEN"
    assert body["time_until_retry"] == 30000

    overall = client.get("/health/services").json()
    assert overall["overall"] == "degraded"
    assert overall["recommendations"]["recommended_provider"] == "gemini"

    reset = client.post("/breakers/openai/reset").json()
    assert reset["state"] == "CLOSED"
    assert reset["failure_count"] == 0
    assert client.get("/health/services").json()["overall"] == "healthy"

    assert client.get("/breakers/claude").status_code == 404
    assert client.post("/breakers/claude/reset").status_code == 404
    assert set(client.get("/breakers").json()) == {"openai", "gemini", "unified-ai"}


def test_api_reload_reports_config_errors(tmp_path, monkeypatch):
    ctx = make_context(tmp_path)
    monkeypatch.setattr(service, "DEFAULT_CONTEXT", ctx)
    client = TestClient(app)
    assert client.post("/admin/reload-config").json() == {"status": "reloaded"}

    (tmp_path / "configs" / "services.yml").write_text("base_url: [\n", encoding="utf-8")
    response = client.post("/admin/reload-config")
    assert response.status_code == 400


class FakeClock:
    def __init__(self, start: int = 2_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


def test_reload_keeps_the_breaker_with_a_call_in_flight(tmp_path):
    clock = FakeClock()
    sent = []

    def counting_handler(request):
        sent.append(request.url.path)
        return handler(request)

    ctx = make_context(tmp_path, clock=clock, transport_handler=counting_handler)
    gemini = ctx.registry.get("gemini")
    gemini.record_failure(RuntimeError("down"))
    clock.advance(45000)

    async def scenario():
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return "ok"

        task = asyncio.create_task(gemini.execute(slow))
        await asyncio.sleep(0)
        ctx.reload_config()
        assert ctx.registry.get("gemini") is gemini
        with pytest.raises(ServiceUnavailable) as excinfo:
            await ctx.request({"message": "hej"}, service="gemini")
        gate.set()
        return await task, excinfo.value

    result, rejected = asyncio.run(scenario())
    assert result == "ok"
    assert rejected.reason == "recovery probe in progress"
    assert sent == []
    assert gemini.state.value == "CLOSED"


def test_reload_updates_breaker_config_in_place(tmp_path):
    ctx = make_context(tmp_path)
    openai = ctx.registry.get("openai")
    (tmp_path / "configs" / "breakers.yml").write_text(
        BREAKERS.replace("reset_timeout_ms: 30000", "reset_timeout_ms: 10000"), encoding="utf-8"
    )
    ctx.reload_config()

    assert ctx.registry.get("openai") is openai
    assert openai.config.reset_timeout_ms == 10000
    assert ctx.executors["openai"].breaker is openai


def test_failing_subscriber_is_logged_and_others_still_notified(tmp_path):
    ctx = make_context(tmp_path)
    events = []

    def broken(event):
        raise RuntimeError("toast failed")

    ctx.subscribe(broken)
    ctx.subscribe(events.append)

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(ctx.request({"message": "hej"}, service="openai"))
    assert [event.kind for event in events] == [StateChangeKind.opened]
    failures = [entry for entry in ctx.logger.read() if entry["event"] == "state_change_hook_failed"]
    assert failures[0]["service_key"] == "openai"
    assert failures[0]["error"] == "toast failed"
