"""
HTTP surface for scopegate.

A thin Starlette app over the registry and the access controller:

    GET    /scopes             list initialized scopes
    POST   /scopes/init        initialize scopes once, returns the root token
    POST   /scopes/authorize   may the bearer token perform {method, uri}?
    GET    /roles              list roles
    POST   /roles              create a role
    GET    /roles/{id}         get a role ("self": role IDs of the caller)
    PUT    /roles/{id}         replace a role
    DELETE /roles/{id}         delete a role
    GET    /health             liveness probe
    GET    /ready              readiness probe

Errors are answered as {"status": "error", "message": "..."}; calls without a
payload answer {"status": "ok"}. Failures of the OAuth2 provider or the policy
service are logged in full but reported to the client with a generic message.

Running the server:
    python -m scopegate.server
"""

import contextlib
import json
import logging
import sys
from collections.abc import AsyncIterator
from typing import Any

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from scopegate.access import AccessController, Decision, DenyReason
from scopegate.auth import JWTIntrospector, bearer_token
from scopegate.collaborators import TokenIntrospector
from scopegate.config import settings
from scopegate.errors import (
    AccessControlError,
    AlreadyInitialized,
    CollaboratorUnavailable,
    InvalidToken,
    Unauthorized,
    ValidationError,
)
from scopegate.hydra import HydraClient
from scopegate.keto import KetoClient
from scopegate.registry import ScopeRegistry
from scopegate.users import InMemoryUserDirectory

# ---------------------------------------------------------------------------
# Structured JSON Logging
# ---------------------------------------------------------------------------
# One JSON object per log line, so the log pipeline can index and filter
# decisions by request ID, method, URI and reason.


class JSONLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Example output:

        {"timestamp": "2026-02-06 10:30:00,123", "level": "WARNING", "logger": "scopegate.access",
         "message": "Action denied", "request_id": "1f2e3d4c", "decision": "denied", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Structured fields passed via logger.info("msg", extra={"auth_data": {...}})
        if hasattr(record, "auth_data"):
            log_entry.update(record.auth_data)
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def configure_logging(level: str = settings.log_level) -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONLogFormatter())
    logging.basicConfig(level=getattr(logging, level.upper()), handlers=[handler])


logger = logging.getLogger("scopegate.server")


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

DENY_MESSAGES = {
    DenyReason.INVALID_TOKEN: InvalidToken().message,
    DenyReason.UNAUTHORIZED: Unauthorized().message,
    DenyReason.INTROSPECTION_FAILED: CollaboratorUnavailable.public_message,
    DenyReason.POLICY_UNAVAILABLE: CollaboratorUnavailable.public_message,
}


def status_ok() -> JSONResponse:
    return JSONResponse({"status": "ok"})


def error_response(message: str, status_code: int, **extra: Any) -> JSONResponse:
    return JSONResponse({"status": "error", "message": message, **extra}, status_code=status_code)


async def handle_access_control_error(request: Request, exc: AccessControlError) -> Response:
    if isinstance(exc, CollaboratorUnavailable):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return error_response(exc.public_message, exc.status_code)
    return error_response(exc.message, exc.status_code)


def decision_response(decision: Decision) -> JSONResponse:
    if decision.allowed:
        return status_ok()
    if decision.reason is DenyReason.INVALID_REQUEST:
        return error_response(decision.detail, 400, reason=decision.reason.value)
    return error_response(DENY_MESSAGES[decision.reason], 403, reason=decision.reason.value)


async def read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        raise ValidationError("missing request body")
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON body: {e.msg}") from e


async def read_json_object(request: Request) -> dict[str, Any]:
    data = await read_json(request)
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def controller_of(request: Request) -> AccessController:
    return request.app.state.controller


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------


async def list_scopes(request: Request) -> Response:
    scopes = controller_of(request).registry.get_scopes()
    return JSONResponse([scope.model_dump() for scope in scopes])


async def initialize_scopes(request: Request) -> Response:
    """Initialize scopes for this instance. Succeeds at most once per process."""
    registry = controller_of(request).registry
    data = await read_json(request)
    if not isinstance(data, list):
        raise ValidationError("request body must be a JSON list of scopes")

    try:
        token = await registry.initialize_scopes(data)
    except AlreadyInitialized:
        # Leave the existing scopes alone; only a failed attempt is reset.
        raise
    except AccessControlError as e:
        logger.warning("Error initializing scopes: %s", e.message)
        registry.reset()
        raise

    return JSONResponse({"status": "ok", "token": token})


async def authorize_action(request: Request) -> Response:
    """May the subject behind the bearer token perform {method, uri}?"""
    token = bearer_token(request.headers.get("authorization"))
    data = await read_json_object(request)

    method = data.get("method")
    uri = data.get("uri")
    if not isinstance(method, str) or not isinstance(uri, str):
        return decision_response(
            Decision.deny(DenyReason.INVALID_REQUEST, "method and uri must be strings")
        )

    decision = await controller_of(request).authorize(token, method, uri)
    return decision_response(decision)


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


async def list_roles(request: Request) -> Response:
    roles = await controller_of(request).list_roles()
    return JSONResponse([role.to_json() for role in roles])


async def create_role(request: Request) -> Response:
    role = await controller_of(request).create_role(await read_json_object(request))
    return JSONResponse(role.to_json())


async def get_role(request: Request) -> Response:
    role_id = request.path_params["id"]
    controller = controller_of(request)

    if role_id == "self":
        token = bearer_token(request.headers.get("authorization"))
        return JSONResponse(await controller.roles_for_token(token))

    role = await controller.get_role(role_id)
    return JSONResponse(role.to_json())


async def update_role(request: Request) -> Response:
    role_id = request.path_params["id"]
    role = await controller_of(request).update_role(role_id, await read_json_object(request))
    return JSONResponse(role.to_json())


async def delete_role(request: Request) -> Response:
    await controller_of(request).delete_role(request.path_params["id"])
    return status_ok()


# ---------------------------------------------------------------------------
# Health and Readiness Endpoints
# ---------------------------------------------------------------------------
# Not protected: probes run without a token and must keep working even when
# the OAuth2 provider or the policy service is down.


async def health_check(request: Request) -> Response:
    """Liveness probe: is the server process alive and responsive?"""
    return JSONResponse({"status": "healthy"})


async def readiness_check(request: Request) -> Response:
    """Readiness probe: can this instance serve requests?"""
    registry = controller_of(request).registry
    return JSONResponse({"status": "ready", "scopes_initialized": registry.initialized})


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def build_controller() -> tuple[AccessController, list[Any]]:
    """Wire the collaborators from settings. Returns the clients to close."""
    hydra = HydraClient()
    keto = KetoClient()

    introspector: TokenIntrospector = hydra
    if settings.introspection == "jwt":
        introspector = JWTIntrospector()

    registry = ScopeRegistry(issuer=hydra, policy=keto)
    controller = AccessController(
        registry,
        introspector=introspector,
        policy=keto,
        users=InMemoryUserDirectory(settings.user_ids),
    )
    return controller, [hydra, keto]


def create_app(controller: AccessController | None = None) -> Starlette:
    clients: list[Any] = []
    if controller is None:
        controller, clients = build_controller()

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        for client in clients:
            await client.aclose()

    app = Starlette(
        routes=[
            Route("/scopes", list_scopes, methods=["GET"]),
            Route("/scopes/init", initialize_scopes, methods=["POST"]),
            Route("/scopes/authorize", authorize_action, methods=["POST"]),
            Route("/roles", list_roles, methods=["GET"]),
            Route("/roles", create_role, methods=["POST"]),
            Route("/roles/{id}", get_role, methods=["GET"]),
            Route("/roles/{id}", update_role, methods=["PUT"]),
            Route("/roles/{id}", delete_role, methods=["DELETE"]),
            Route("/health", health_check, methods=["GET"]),
            Route("/ready", readiness_check, methods=["GET"]),
        ],
        exception_handlers={AccessControlError: handle_access_control_error},
        lifespan=lifespan,
    )
    app.state.controller = controller
    return app


# ---------------------------------------------------------------------------
# Server entry point
# ---------------------------------------------------------------------------
def main() -> None:
    configure_logging()
    logger.info("Starting scopegate on %s:%d", settings.host, settings.port)
    uvicorn.run(
        create_app(),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
