import asyncio
import json
import logging
import threading

from fastapi import FastAPI
from fastapi.testclient import TestClient

from msgboard.config import Settings
from msgboard.context import AppContext, RequestIdGenerator
from msgboard.main import create_app
from msgboard.pipeline import (
    REQUEST_ID_HEADER,
    TIMEOUT_MESSAGE,
    AccessLogInterceptor,
    Interceptor,
    Pipeline,
    TimeoutInterceptor,
    TracingInterceptor,
)


def test_inbound_request_id_is_echoed(client):
    r = client.get("/", headers={REQUEST_ID_HEADER: "abc-123"})
    assert r.headers[REQUEST_ID_HEADER] == "abc-123"


def test_request_id_generated_when_absent(client):
    first = client.get("/").headers[REQUEST_ID_HEADER]
    second = client.get("/").headers[REQUEST_ID_HEADER]
    assert first and second
    assert first != second


def test_error_responses_carry_request_id(client):
    r = client.post("/add", json={"message": "hi"})
    assert r.status_code == 401
    assert r.headers[REQUEST_ID_HEADER]

    r = client.get("/nope", headers={REQUEST_ID_HEADER: "lost"})
    assert r.status_code == 404
    assert r.headers[REQUEST_ID_HEADER] == "lost"


def test_request_id_generator_unique_across_threads():
    generate = RequestIdGenerator()
    seen = []
    lock = threading.Lock()

    def worker():
        ids = [generate() for _ in range(500)]
        with lock:
            seen.extend(ids)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 4000
    assert len(set(seen)) == 4000


def test_access_log_line(client, caplog):
    with caplog.at_level(logging.INFO, logger="msgboard"):
        client.get(
            "/messages",
            headers={REQUEST_ID_HEADER: "req-1", "User-Agent": "pytest-agent"},
        )

    lines = [json.loads(r.getMessage()) for r in caplog.records if r.getMessage().startswith("{")]
    entry = next(line for line in lines if line["request_id"] == "req-1")
    assert entry["method"] == "GET"
    assert entry["path"] == "/messages"
    assert entry["user_agent"] == "pytest-agent"
    assert entry["status"] == 200
    assert "remote_addr" in entry
    assert "latency_ms" in entry


def test_access_log_carries_submit_result(client, caplog):
    with caplog.at_level(logging.INFO, logger="msgboard"):
        client.post("/add", params={"access_key": "nope"}, json={"message": "x"})

    lines = [json.loads(r.getMessage()) for r in caplog.records if r.getMessage().startswith("{")]
    assert lines[-1]["status"] == 401
    assert lines[-1]["result"] == "unauthorized"


def test_access_log_written_when_handler_raises(caplog):
    context = AppContext(Settings(DATABASE_URL=""))
    app = FastAPI()

    @app.get("/boom")
    def boom():
        raise RuntimeError("boom")

    Pipeline().use(TracingInterceptor(context)).use(AccessLogInterceptor(context)).install(app)

    with caplog.at_level(logging.INFO, logger="msgboard"):
        with TestClient(app, raise_server_exceptions=False) as client:
            r = client.get("/boom")

    assert r.status_code == 500
    errors = [r for r in caplog.records if r.levelno == logging.ERROR and r.name == "msgboard"]
    assert errors
    assert json.loads(errors[-1].getMessage())["status"] == 500


def test_timeout_returns_503_with_fixed_message(settings):
    settings.REQUEST_TIMEOUT = 0.1
    context = AppContext(settings)
    app = create_app(context)

    @app.get("/slow")
    async def slow():
        await asyncio.sleep(1)
        return {"ok": True}

    with TestClient(app) as client:
        r = client.get("/slow", headers={REQUEST_ID_HEADER: "slow-1"})
        assert r.status_code == 503
        assert r.text == TIMEOUT_MESSAGE
        assert r.headers[REQUEST_ID_HEADER] == "slow-1"

        # fast routes are unaffected
        assert client.get("/").status_code == 200


def test_pipeline_order_first_use_is_outermost():
    calls = []

    class Recorder(Interceptor):
        def __init__(self, name):
            self.name = name

        async def __call__(self, request, call_next):
            calls.append(self.name)
            return await call_next(request)

    app = FastAPI()

    @app.get("/")
    def index():
        return {}

    Pipeline().use(Recorder("outer")).use(Recorder("middle")).use(Recorder("inner")).install(app)

    with TestClient(app) as client:
        client.get("/")

    assert calls == ["outer", "middle", "inner"]


def test_timeout_interceptor_passes_fast_responses():
    app = FastAPI()

    @app.get("/")
    def index():
        return {"ok": True}

    Pipeline().use(TimeoutInterceptor(1.0)).install(app)
    with TestClient(app) as client:
        r = client.get("/")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
