from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import TextIO

from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from debugserver.config import ServerConfig
from debugserver.registry import PendingRequest, PendingRequestRegistry
from debugserver.release import ReleaseTrigger
from debugserver.schemas import ReleasedBody
from debugserver.telemetry import Telemetry

logger = logging.getLogger(__name__)

HELD_CONTENT_TYPE = "text/plain"


@dataclass
class Services:
    config: ServerConfig
    telemetry: Telemetry
    registry: PendingRequestRegistry
    release_trigger: ReleaseTrigger


def _build_services(
    config: ServerConfig,
    operator_input: TextIO,
    registry: PendingRequestRegistry | None,
) -> Services:
    telemetry = Telemetry()
    request_registry = registry or PendingRequestRegistry()
    return Services(
        config=config,
        telemetry=telemetry,
        registry=request_registry,
        release_trigger=ReleaseTrigger(
            registry=request_registry,
            stream=operator_input,
            telemetry=telemetry,
        ),
    )


def _remote_address(request: Request) -> str:
    if request.client is None:
        return "unknown"
    return f"{request.client.host}:{request.client.port}"


async def _held_body(services: Services, pending: PendingRequest) -> AsyncIterator[str]:
    await pending.wait_released()

    waited = pending.waited_seconds()
    services.telemetry.observe_hold(waited)
    logger.info(
        "Request #%d: Response body sent after waiting %.3fs",
        pending.sequence_number,
        waited,
    )
    yield ReleasedBody.now().model_dump_json() + "\n"


class HoldEndpoint:
    """Catch-all ASGI endpoint; every method on every path is held the same way."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        services: Services = request.app.state.services
        pending, pending_count = await services.registry.register(
            remote_address=_remote_address(request),
            path=request.url.path,
            method=request.method,
        )
        services.telemetry.record_held(method=request.method, pending_count=pending_count)
        logger.info(
            "Request #%d: %s %s from %s",
            pending.sequence_number,
            pending.method,
            pending.path,
            pending.remote_address,
        )
        logger.info("Pending requests: %d (Press ENTER to release all)", pending_count)

        response = StreamingResponse(
            _held_body(services=services, pending=pending),
            status_code=200,
            headers={"Content-Type": HELD_CONTENT_TYPE},
        )
        await response(scope, receive, send)


def create_app(
    config: ServerConfig | None = None,
    operator_input: TextIO | None = None,
    registry: PendingRequestRegistry | None = None,
) -> FastAPI:
    app_config = config or ServerConfig()
    input_stream = operator_input if operator_input is not None else sys.stdin

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services = _build_services(
            config=app_config,
            operator_input=input_stream,
            registry=registry,
        )
        app.state.services = services
        services.release_trigger.start(asyncio.get_running_loop())
        yield
        services.release_trigger.stop()

    app = FastAPI(
        title="Variable Debug Server",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.add_route("/{path:path}", HoldEndpoint())

    return app
