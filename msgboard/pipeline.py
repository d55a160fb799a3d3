"""
Request pipeline: interceptors wrapped around every route.

Each interceptor is an ``(request, call_next) -> Response`` callable, the same
shape FastAPI's ``app.middleware("http")`` expects. ``Pipeline.install`` adds
them so that the first one passed to ``use`` sees the request first.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, List

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse

from .context import AppContext, RequestMeta
from .logging_utils import log_json, remote_addr

REQUEST_ID_HEADER = "X-Request-Id"
TIMEOUT_MESSAGE = "Timeout! Server is taking unexpected amount of time to respond."

CallNext = Callable[[Request], Awaitable[Response]]


class Interceptor:
    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        raise NotImplementedError


class Pipeline:
    def __init__(self) -> None:
        self._interceptors: List[Interceptor] = []

    def use(self, interceptor: Interceptor) -> "Pipeline":
        self._interceptors.append(interceptor)
        return self

    def install(self, app: FastAPI) -> None:
        # starlette makes the most recently added middleware the outermost
        for interceptor in reversed(self._interceptors):
            app.middleware("http")(interceptor)


class TimeoutInterceptor(Interceptor):
    """
    Answers 503 once the deadline passes.

    Sync handlers run in a worker thread that cannot be interrupted, so a slow
    datastore call keeps its thread until it returns; only the response is cut short.
    """

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            response = PlainTextResponse(TIMEOUT_MESSAGE, status_code=503)
            meta = getattr(request.state, "meta", None)
            if meta is not None:
                response.headers[REQUEST_ID_HEADER] = meta.request_id
            return response


class TracingInterceptor(Interceptor):
    def __init__(self, context: AppContext) -> None:
        self.context = context

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or self.context.next_request_id()
        request.state.meta = RequestMeta(request_id=request_id)
        # handlers add fields here that end up on the access log line
        request.state.log_extra = {}

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class AccessLogInterceptor(Interceptor):
    def __init__(self, context: AppContext) -> None:
        self.context = context

    async def __call__(self, request: Request, call_next: CallNext) -> Response:
        start = time.perf_counter()
        meta = getattr(request.state, "meta", None)
        log = {
            "request_id": meta.request_id if meta is not None else "unknown",
            "method": request.method,
            "path": request.url.path,
            "remote_addr": remote_addr(request),
            "user_agent": request.headers.get("user-agent", ""),
        }

        try:
            response = await call_next(request)
        except Exception:
            log["status"] = 500
            log["latency_ms"] = round((time.perf_counter() - start) * 1000.0, 2)
            log_json(logging.ERROR, log)
            raise

        latency_ms = (time.perf_counter() - start) * 1000.0
        self.context.metrics.inc_http_request(request.url.path, response.status_code)
        self.context.metrics.observe_latency_ms(latency_ms)

        log["status"] = response.status_code
        log["latency_ms"] = round(latency_ms, 2)
        if isinstance(getattr(request.state, "log_extra", None), dict):
            log.update(request.state.log_extra)

        log_json(logging.INFO, log)
        return response


def default_pipeline(context: AppContext) -> Pipeline:
    return (
        Pipeline()
        .use(TimeoutInterceptor(context.settings.REQUEST_TIMEOUT))
        .use(TracingInterceptor(context))
        .use(AccessLogInterceptor(context))
    )
