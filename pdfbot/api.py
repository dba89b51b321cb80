"""FastAPI surface: push jobs and look them up."""

from __future__ import annotations

import logging
import secrets
import subprocess
from typing import Callable, Optional

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from pdfbot.bootstrap import build_queue
from pdfbot.errors import (
    ERROR_INVALID_JOB_ID,
    ERROR_INVALID_TOKEN,
    ERROR_STORE,
    StoreError,
    create_error_response,
)
from pdfbot.queue import JobQueue
from pdfbot.schemas import ErrorResponse, JobCreateRequest
from pdfbot.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

QueueFactory = Callable[[], JobQueue]


class InvalidToken(Exception):
    """Raised by the auth dependency when the bearer token does not match."""


def create_app(settings: Settings | None = None, queue_factory: QueueFactory | None = None) -> FastAPI:
    active = settings or get_settings()
    token = active.api.token
    make_queue = queue_factory or (lambda: build_queue(active))

    if not token:
        LOGGER.warning("The server should be protected using a token.")

    app = FastAPI(title="pdfbot")
    instrumentator = Instrumentator()
    instrumentator.instrument(app)
    try:
        instrumentator.expose(app, include_in_schema=False, should_gzip=True)
    except ValueError:  # pragma: no cover - already registered
        LOGGER.debug("Prometheus /metrics endpoint already exposed")

    async def require_token(authorization: Optional[str] = Header(default=None)) -> None:
        if not token:
            return
        scheme, _, supplied = (authorization or "").partition(" ")
        if scheme.lower() != "bearer" or not secrets.compare_digest(supplied.strip(), token):
            raise InvalidToken()

    @app.exception_handler(InvalidToken)
    async def _invalid_token(_: Request, __: InvalidToken) -> JSONResponse:
        return _error_json(status.HTTP_401_UNAUTHORIZED, create_error_response(ERROR_INVALID_TOKEN))

    @app.exception_handler(StoreError)
    async def _store_error(_: Request, __: StoreError) -> JSONResponse:
        return _error_json(status.HTTP_503_SERVICE_UNAVAILABLE, create_error_response(ERROR_STORE))

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/", dependencies=[Depends(require_token)])
    async def push_job(request: JobCreateRequest) -> JSONResponse:
        queue = make_queue()
        try:
            response = await queue.enqueue(request.url, request.meta or {})
        finally:
            await queue.close()

        if isinstance(response, ErrorResponse):
            return _error_json(status.HTTP_422_UNPROCESSABLE_ENTITY, response)

        if active.api.post_push_command:
            _spawn_post_push(active.api.post_push_command)

        return JSONResponse(status_code=status.HTTP_201_CREATED, content=response.model_dump(mode="json"))

    @app.get("/job/{job_id}", dependencies=[Depends(require_token)])
    async def fetch_job(job_id: str) -> JSONResponse:
        queue = make_queue()
        try:
            job = await queue.get_by_id(job_id)
        finally:
            await queue.close()

        if job is None:
            return _error_json(status.HTTP_404_NOT_FOUND, create_error_response(ERROR_INVALID_JOB_ID))
        return JSONResponse(status_code=status.HTTP_200_OK, content=job.model_dump(mode="json"))

    return app


def _error_json(status_code: int, error: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=error.model_dump())


def _spawn_post_push(command: tuple[str, ...]) -> None:
    LOGGER.info("Running post-push command %s", " ".join(command))
    try:
        subprocess.Popen(list(command))  # noqa: S603
    except OSError as exc:
        LOGGER.warning("Post-push command %s failed to start: %s", command[0], exc)
