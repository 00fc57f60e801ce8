"""FastAPI application and HTTPS server for the script gateway.

Routes (all behind the CORS middleware):

    GET  /                             -> HTML index of the routes below
    GET  /listdbs                      -> raw stdout of psql_listdbs.sh
    GET  /version                      -> raw stdout of psql_version.sh
    POST /base64querypostbase64return  <- {"database": ..., "base64value": ...}
                                       -> {"base64ResultsObj": ...}
    POST /base64postjsonreturn         <- same body -> {"jsonResultsObj": ...}
    POST /base64nonquery               <- same body -> {"jsonResultsObj": ...}

The three POST routes share one handler, parameterized by script name and
reply field, so the method check, body bound and deadline are the same
for all of them.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from starlette.requests import ClientDisconnect

from dbgateway.config.settings import Settings
from dbgateway.gateway.cors import StaticCORSMiddleware
from dbgateway.gateway.invoker import ProcessInvoker, ScriptError
from dbgateway.gateway.routes import (
    ROUTES,
    SCRIPT_ROUTES,
    SHELL_ROUTES,
    ScriptRoute,
    ShellRoute,
    render_index,
)
from dbgateway.gateway.timeouts import WriteDeadlineMiddleware, header_timeout_protocol
from dbgateway.utils.logging import uvicorn_log_config

logger = logging.getLogger(__name__)

GENERIC_SCRIPT_ERROR = "Script execution failed"


# ---------------------------------------------------------------------------
# Request / startup models
# ---------------------------------------------------------------------------

class QueryRequest(BaseModel):
    """Body of the script-backed POST routes.

    ``base64value`` is passed through untouched; decoding it is the
    script's job. Field names match case-insensitively, with an exact
    match taking precedence.
    """

    model_config = ConfigDict(extra="ignore")

    database: str = Field(default="", description="Target database name")
    base64value: str = Field(default="", description="Base64-encoded payload")

    @model_validator(mode="before")
    @classmethod
    def _fold_field_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        folded = dict(data)
        for name in cls.model_fields:
            if name in data:
                continue
            for key, value in data.items():
                if isinstance(key, str) and key.lower() == name:
                    folded[name] = value
                    break
        return folded


class ListenerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str
    port: int
    cert_file: Path
    key_file: Path


class StartupError(Exception):
    """Raised when the server cannot start with the given settings."""


# ---------------------------------------------------------------------------
# Body handling
# ---------------------------------------------------------------------------

async def read_bounded_body(request: Request, limit: int, timeout: float) -> bytes:
    """Read the request body, failing as soon as it grows past ``limit``.

    Raises:
        HTTPException: 413 when the body is too large, 408 when it is not
            fully received within ``timeout`` seconds, 400 when the client
            goes away mid-body or sends a bad Content-Length.
    """
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            declared_size = int(declared)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid request body") from None
        if declared_size > limit:
            raise HTTPException(status_code=413, detail="Request body too large")

    async def collect() -> bytes:
        body = bytearray()
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise HTTPException(status_code=413, detail="Request body too large")
        return bytes(body)

    try:
        return await asyncio.wait_for(collect(), timeout)
    except asyncio.TimeoutError:
        raise HTTPException(status_code=408, detail="Request body not received in time") from None
    except ClientDisconnect:
        raise HTTPException(status_code=400, detail="Invalid request body") from None


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    settings: Settings | None = None,
    invoker: ProcessInvoker | None = None,
) -> FastAPI:
    """Create the gateway application.

    Args:
        settings: Loaded configuration. Defaults to an empty ``Settings``.
        invoker: Optional pre-configured ProcessInvoker (for testing).
            Defaults to one rooted at the current working directory.
    """
    settings = settings or Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Gateway started: %d routes, scripts in %s",
            len(ROUTES), app.state.invoker.working_dir,
        )
        yield
        logger.info("Gateway stopped")

    app = FastAPI(
        title="dbgateway",
        description="HTTPS gateway in front of database shell scripts",
        version="0.1.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.invoker = invoker or ProcessInvoker()

    app.add_middleware(StaticCORSMiddleware, allow_origin=settings.get("cors_allowed_domains"))

    @app.get("/", response_class=HTMLResponse)
    async def index() -> str:
        return render_index(settings.index_base_url())

    for shell_route in SHELL_ROUTES:
        app.add_api_route(
            shell_route.path,
            _shell_endpoint(app, shell_route),
            methods=["GET"],
            name=shell_route.name,
        )

    for script_route in SCRIPT_ROUTES:
        app.add_api_route(
            script_route.path,
            _script_endpoint(app, script_route),
            methods=["POST"],
            name=script_route.name,
        )

    return app


def _script_endpoint(
    app: FastAPI, route: ScriptRoute
) -> Callable[[Request], Awaitable[JSONResponse]]:
    settings: Settings = app.state.settings

    async def run_script(request: Request) -> JSONResponse:
        body = await read_bounded_body(
            request, settings.max_body_bytes, settings.timeouts.read
        )
        try:
            query = QueryRequest.model_validate_json(body)
        except ValidationError as e:
            logger.debug("Rejected body on %s: %s", route.path, e)
            raise HTTPException(status_code=400, detail="Invalid request body") from None

        invoker: ProcessInvoker = app.state.invoker
        descriptor = invoker.describe(
            route.script,
            [query.database, query.base64value],
            timeout=settings.script_timeout,
        )
        try:
            output = await invoker.invoke(descriptor, is_disconnected=request.is_disconnected)
        except ScriptError as e:
            logger.error(
                "Script failed (%s): %s; command=%s output=%s",
                route.script, e, e.command, e.output.decode("utf-8", errors="replace"),
            )
            raise HTTPException(status_code=500, detail=GENERIC_SCRIPT_ERROR) from e

        return JSONResponse({route.result_field: output.decode("utf-8", errors="replace")})

    run_script.__name__ = f"run_{route.name}"
    return run_script


def _shell_endpoint(
    app: FastAPI, route: ShellRoute
) -> Callable[[Request], Awaitable[Response]]:

    async def run_shell_script(request: Request) -> Response:
        invoker: ProcessInvoker = app.state.invoker
        descriptor = invoker.describe_shell(route.script)
        try:
            output = await invoker.invoke(descriptor, is_disconnected=request.is_disconnected)
        except ScriptError as e:
            logger.error(
                "Script failed (%s): %s; output=%s",
                route.script, e, e.output.decode("utf-8", errors="replace"),
            )
            return PlainTextResponse(f"Error running script: {e}", status_code=500)
        return Response(content=output, media_type="application/json")

    run_shell_script.__name__ = f"run_{route.name}"
    return run_shell_script


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------

def check_startup(settings: Settings, base_dir: Path | str | None = None) -> ListenerConfig:
    """Validate everything the listener needs before binding.

    Raises:
        StartupError: If api_port is missing, empty or not a port number,
            or if the certificate or key file does not exist.
    """
    base = Path(base_dir) if base_dir else Path.cwd()

    port_value = settings.get("api_port").strip()
    if not port_value:
        raise StartupError("api_port missing/empty in config")
    try:
        port = int(port_value)
    except ValueError:
        raise StartupError(f"api_port is not a number: {port_value!r}") from None
    if not 0 < port < 65536:
        raise StartupError(f"api_port out of range: {port}")

    cert_file = base / settings.cert_file
    key_file = base / settings.key_file
    if not cert_file.is_file():
        raise StartupError(f"Cert file not found: {cert_file}")
    if not key_file.is_file():
        raise StartupError(f"Key file not found: {key_file}")

    return ListenerConfig(
        host=settings.api_host, port=port, cert_file=cert_file, key_file=key_file
    )


def serve(settings: Settings, working_dir: Path | str | None = None) -> None:
    """Run the gateway over TLS until the server stops.

    Raises:
        StartupError: If the startup checks fail; nothing is bound then.
    """
    listener = check_startup(settings, working_dir)
    app = create_app(settings, invoker=ProcessInvoker(working_dir))
    timeouts = settings.timeouts

    logger.info("API running on https://localhost:%d", listener.port)
    uvicorn.run(
        WriteDeadlineMiddleware(app, timeout=timeouts.write),
        host=listener.host,
        port=listener.port,
        ssl_certfile=str(listener.cert_file),
        ssl_keyfile=str(listener.key_file),
        http=header_timeout_protocol(timeouts.read_header),
        timeout_keep_alive=timeouts.idle,
        log_config=uvicorn_log_config(settings.logging),
    )
