"""HTTP application exposing configured endpoints and webhooks."""

import json
import socket
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .auth import DatabaseCredentialManager, TokenStore
from .client import SqlServerClient
from .config import GatewayConfig
from .dispatcher import ProcedureDispatcher, delete_payload
from .environments import EnvironmentResolver, mask_connection_string
from .errors import (
    ExecutionError,
    GatewayError,
    MethodNotAllowedError,
    ValidationError,
    ErrorHandler,
    ErrorContext,
    get_logger,
    log_error,
    log_operation
)
from .executor import QueryExecutor
from .models import (
    HttpMethod,
    ProcedureMethod,
    PageResponse,
    WriteResponse,
    WebhookResponse,
    ErrorResponse,
    HealthResponse,
)
from .odata import parse_query_options
from .registry import EndpointRegistry, FileEndpointLoader
from .security import RateLimiter, RateLimitConfig, RateLimitExceeded
from .webhooks import WebhookIngestor


logger = get_logger(__name__)

UNAUTHENTICATED_PATHS = frozenset({"/health", "/swagger", "/openapi.json"})

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    405: {"model": ErrorResponse},
    429: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@dataclass
class GatewayServices:
    """Components shared by every request."""
    config: GatewayConfig
    registry: EndpointRegistry
    resolver: EnvironmentResolver
    client: SqlServerClient
    executor: QueryExecutor
    dispatcher: ProcedureDispatcher
    ingestor: WebhookIngestor
    token_store: Optional[TokenStore] = None
    rate_limiter: Optional[RateLimiter] = None

    @classmethod
    def build(cls, config: GatewayConfig, connect: Optional[Callable[..., Any]] = None) -> "GatewayServices":
        """Wire the components from configuration; ``connect`` replaces pyodbc.connect."""
        registry = EndpointRegistry(FileEndpointLoader(config.endpoints_dir))
        client = SqlServerClient(config, DatabaseCredentialManager(), connect=connect)
        return cls(
            config=config,
            registry=registry,
            resolver=EnvironmentResolver.from_directory(config.environments_dir),
            client=client,
            executor=QueryExecutor(client),
            dispatcher=ProcedureDispatcher(client),
            ingestor=WebhookIngestor(client, registry),
            token_store=TokenStore(config.token_db, config.tokens_dir) if config.auth_enabled else None,
            rate_limiter=RateLimiter(RateLimitConfig(requests_per_minute=config.requests_per_minute))
            if config.rate_limit_enabled else None,
        )


def log_startup_report(services: GatewayServices) -> None:
    """Log every known environment (masked) and endpoint."""
    for name in services.resolver.list_environments():
        try:
            target = services.resolver.resolve(name)
        except GatewayError as e:
            logger.warning("Environment not usable", environment=name, error=e.message)
            continue
        log_operation(
            logger,
            "environment_loaded",
            environment=name,
            server_name=target.server_name,
            connection=mask_connection_string(target.connection_string)
        )

    endpoints = services.registry.list_endpoints()
    for name, descriptor in endpoints.items():
        log_operation(
            logger,
            "endpoint_loaded",
            endpoint=name,
            resource=descriptor.table_ref,
            methods=[method.value for method in descriptor.allowed_methods],
            procedure=descriptor.procedure
        )
    log_operation(logger, "startup_report_completed", endpoint_count=len(endpoints))


def ensure_bootstrap_token(token_store: TokenStore) -> None:
    """Issue a first token for this host when the store is empty."""
    if token_store.count() > 0:
        return
    username = socket.gethostname()
    token_store.generate_token(username)
    logger.info(
        "No tokens found; generated a token for this host",
        username=username,
        token_file=str(token_store.token_file_path(username))
    )


def _error_response(error: GatewayError) -> JSONResponse:
    headers = {}
    if error.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    retry_after = getattr(error, "retry_after", None)
    if retry_after:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=error.status_code,
        content=ErrorHandler.to_response_body(error),
        headers=headers or None
    )


def _parse_json_body(raw: bytes) -> Any:
    if not raw or not raw.strip():
        raise ValidationError("Request body is required", field="body", error_code="INVALID_PAYLOAD")
    try:
        return json.loads(raw, parse_float=Decimal)
    except ValueError as e:
        raise ValidationError("Request body is not valid JSON", field="body", error_code="INVALID_PAYLOAD") from e


def _json_body_text(raw: bytes) -> str:
    """The request body as text, once it is known to hold valid JSON."""
    _parse_json_body(raw)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ValidationError("Request body must be UTF-8 encoded", field="body", error_code="INVALID_PAYLOAD") from e


def _endpoint_name(endpoint_path: str) -> str:
    name = endpoint_path.strip("/").split("/")[0] if endpoint_path else ""
    if not name:
        raise ValidationError("Missing endpoint path in the request.", field="endpoint", error_code="MISSING_ENDPOINT")
    return name


def create_app(
    config: Optional[GatewayConfig] = None,
    services: Optional[GatewayServices] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Gateway configuration; read from the environment when omitted
        services: Pre-built components, mainly for tests

    Returns:
        Configured FastAPI application
    """
    if services is None:
        config = config or GatewayConfig.from_env()
        config.validate()
        services = GatewayServices.build(config)
    config = services.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if services.token_store is not None:
            ensure_bootstrap_token(services.token_store)
        log_startup_report(services)
        yield
        services.client.credential_manager.clear()

    app = FastAPI(
        title="SQL OData Gateway",
        description="Configuration-driven OData/REST endpoints over SQL Server tables, views and procedures.",
        version=__version__,
        docs_url="/swagger",
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -------------------------------------------------------------------------
    # Middleware and error handlers
    # -------------------------------------------------------------------------

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if services.rate_limiter is not None and request.url.path not in UNAUTHENTICATED_PATHS:
            client_id = request.client.host if request.client else "unknown"
            try:
                services.rate_limiter.check(client_id)
            except RateLimitExceeded as e:
                return _error_response(e)
        return await call_next(request)

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, error: GatewayError) -> JSONResponse:
        if error.status_code < 500:
            log_operation(
                logger,
                "request_rejected",
                level="warning",
                method=request.method,
                path=request.url.path,
                status_code=error.status_code,
                error_code=error.error_code,
                reason=error.message
            )
        return _error_response(error)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, error: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=error.status_code,
            content={"error": str(error.detail), "success": False, "statusCode": error.status_code},
            headers=getattr(error, "headers", None)
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, error: Exception) -> JSONResponse:
        gateway_error = ExecutionError(
            f"Unhandled error: {error}",
            error_code="UNEXPECTED_ERROR",
            context=ErrorContext(operation=f"{request.method} {request.url.path}"),
            cause=error
        )
        log_error(logger, gateway_error, operation="http_request")
        return _error_response(gateway_error)

    # -------------------------------------------------------------------------
    # Dependencies
    # -------------------------------------------------------------------------

    def require_token(authorization: Optional[str] = Header(default=None)) -> None:
        if services.token_store is not None:
            services.token_store.authenticate_header(authorization)

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse)
    def health() -> Dict[str, Any]:
        """Health check endpoint."""
        return {"status": "healthy", "version": __version__}

    @app.get("/api/{env}/{endpoint_path:path}", response_model=PageResponse, responses=ERROR_RESPONSES)
    def query_records(
        env: str,
        endpoint_path: str,
        request: Request,
        select: Optional[str] = Query(default=None, alias="$select"),
        filter: Optional[str] = Query(default=None, alias="$filter"),
        orderby: Optional[str] = Query(default=None, alias="$orderby"),
        top: Optional[str] = Query(default=None, alias="$top"),
        skip: Optional[str] = Query(default=None, alias="$skip"),
        _: None = Depends(require_token),
    ) -> Dict[str, Any]:
        """Query an endpoint with OData $select/$filter/$orderby/$top/$skip."""
        log_operation(logger, "request_received", method="GET", path=request.url.path, env=env)

        target = services.resolver.resolve(env)
        descriptor = services.registry.resolve(_endpoint_name(endpoint_path))
        if not descriptor.allows(HttpMethod.GET):
            raise MethodNotAllowedError(HttpMethod.GET.value, endpoint_path)

        spec = parse_query_options(
            select=select,
            filter=filter,
            orderby=orderby,
            top=top,
            skip=skip,
            default_top=config.default_top,
            max_top=config.max_top,
        )
        page = services.executor.query(target, descriptor, spec, str(request.url.replace(query="")))
        return page.to_dict()

    def _resolve(env: str, endpoint_path: str):
        target = services.resolver.resolve(env)
        return target, services.registry.resolve(_endpoint_name(endpoint_path))

    async def _write(env: str, endpoint_path: str, method: HttpMethod, payload_source) -> Dict[str, Any]:
        target, descriptor = await run_in_threadpool(_resolve, env, endpoint_path)
        payload = await payload_source()
        result = await run_in_threadpool(services.dispatcher.dispatch, target, descriptor, method, payload)
        procedure_method = ProcedureMethod.for_http_method(method)
        return {
            "success": True,
            "message": f"{procedure_method.value} operation completed successfully",
            "result": result,
        }

    @app.post("/api/{env}/{endpoint_path:path}", response_model=WriteResponse, responses=ERROR_RESPONSES)
    async def insert_record(env: str, endpoint_path: str, request: Request, _: None = Depends(require_token)):
        """Call the endpoint's procedure with @Method = INSERT."""
        log_operation(logger, "request_received", method="POST", path=request.url.path, env=env)

        async def body():
            return _parse_json_body(await request.body())

        return await _write(env, endpoint_path, HttpMethod.POST, body)

    @app.put("/api/{env}/{endpoint_path:path}", response_model=WriteResponse, responses=ERROR_RESPONSES)
    async def update_record(env: str, endpoint_path: str, request: Request, _: None = Depends(require_token)):
        """Call the endpoint's procedure with @Method = UPDATE."""
        log_operation(logger, "request_received", method="PUT", path=request.url.path, env=env)

        async def body():
            return _parse_json_body(await request.body())

        return await _write(env, endpoint_path, HttpMethod.PUT, body)

    @app.delete("/api/{env}/{endpoint_path:path}", response_model=WriteResponse, responses=ERROR_RESPONSES)
    async def delete_record(
        env: str,
        endpoint_path: str,
        request: Request,
        id: Optional[str] = Query(default=None),
        _: None = Depends(require_token),
    ):
        """Call the endpoint's procedure with @Method = DELETE and @id from the query string."""
        log_operation(logger, "request_received", method="DELETE", path=request.url.path, env=env)

        async def payload():
            return delete_payload(id)

        return await _write(env, endpoint_path, HttpMethod.DELETE, payload)

    @app.post("/webhook/{env}/{webhook_id}", response_model=WebhookResponse, responses=ERROR_RESPONSES)
    async def handle_webhook(env: str, webhook_id: str, request: Request, _: None = Depends(require_token)):
        """Store a webhook payload in the table configured by the Webhooks endpoint."""
        log_operation(logger, "webhook_received", path=request.url.path, env=env)

        target = await run_in_threadpool(services.resolver.resolve, env)
        payload = _json_body_text(await request.body())
        inserted_id = await run_in_threadpool(services.ingestor.ingest, target, webhook_id, payload)
        return {"message": "Webhook processed successfully.", "id": inserted_id}

    return app
