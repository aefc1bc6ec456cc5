"""FastAPI-based Web adapter for game clients and operators.

This module provides REST endpoints for server management and player
placement, a WebSocket endpoint for the client matchmaking protocol, and
the metrics and health endpoints scraped by the platform.
"""

import json
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import (
    FastAPI,
    HTTPException,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from serverpool.adapters.web.health import create_health_router
from serverpool.config.deployment import (
    GracefulShutdownHandler,
    HealthChecker,
    HealthCheckConfig,
)
from serverpool.core.controller import PoolController
from serverpool.schemas.types import Placement, ServerInstance
from serverpool.utils.errors import (
    AlreadyBoundError,
    NoCapacityError,
    ProvisionerUnavailableError,
    UnknownInstanceError,
)
from serverpool.utils.metrics_exporter import (
    METRICS_CONTENT_TYPE,
    get_metrics_text,
    record_startup_time,
)
from serverpool.utils.telemetry import get_logger

if TYPE_CHECKING:
    from serverpool.config import Config

RETRY_MESSAGE = "New server created, please retry in a moment"


class PlacementRequest(BaseModel):
    """Request model for player placement."""

    player_id: str = Field(..., min_length=1, description="Player identifier")


class PlacementResponse(BaseModel):
    """Response model for a successful placement."""

    player_id: str = Field(..., description="Player identifier")
    server_id: str = Field(..., description="Assigned server instance")
    server_ip: str | None = Field(None, description="Instance host")
    server_port: int | None = Field(None, description="Instance port")

    @classmethod
    def from_placement(cls, placement: Placement) -> "PlacementResponse":
        return cls(
            player_id=placement.player_id,
            server_id=placement.server_id,
            server_ip=placement.host,
            server_port=placement.port,
        )


class ServerListResponse(BaseModel):
    """Response model for the server listing."""

    servers: list[dict[str, Any]]
    count: int


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: dict[str, Any] | None = Field(
        default=None, description="Additional details"
    )


def _server_payload(instance: ServerInstance) -> dict[str, Any]:
    return {
        "id": instance.id,
        "ip": instance.address.host if instance.address else None,
        "port": instance.address.port if instance.address else None,
        "players": instance.player_count,
        "capacity": instance.capacity,
        "status": instance.status.value,
        "created_at": instance.created_at,
    }


def _http_error(
    status_code: int,
    error: str,
    exc: Exception,
    details: dict[str, Any] | None = None,
) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(
            error=error, message=str(exc), details=details
        ).model_dump(),
    )


class WebAdapter:
    """FastAPI-based Web adapter around a PoolController."""

    def __init__(
        self,
        controller: PoolController,
        health_checker: HealthChecker | None = None,
        provision_on_demand: bool = True,
        allowed_origins: list[str] | None = None,
        metrics_path: str = "/metrics",
        environment: str = "development",
    ):
        """Initialize Web adapter.

        Args:
            controller: Pool controller instance
            health_checker: Health checker; one bound to ``controller`` is
                created when omitted
            provision_on_demand: Create an instance when a WebSocket client
                finds no capacity
            allowed_origins: CORS origins
            metrics_path: Path of the Prometheus endpoint
            environment: Environment name reported by ``/health``
        """
        self.controller = controller
        self.health_checker = health_checker or HealthChecker(
            HealthCheckConfig(), controller
        )
        self.provision_on_demand = provision_on_demand
        self.metrics_path = metrics_path
        self.environment = environment
        self.websocket_connections: set[WebSocket] = set()
        self.logger = get_logger("serverpool.web_adapter")

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
            started_at = time.perf_counter()
            await self.controller.start()
            record_startup_time(started_at)
            self.logger.info("Web adapter started")
            yield
            await self.shutdown()
            self.logger.info("Web adapter stopped")

        from serverpool import __version__

        self.app = FastAPI(
            title="Game Server Pool Controller",
            description="Player placement and game server pool management API",
            version=__version__,
            lifespan=lifespan,
        )

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins or ["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self.app.include_router(
            create_health_router(self.health_checker, environment=environment)
        )
        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up API routes."""

        @self.app.get("/servers", response_model=ServerListResponse)
        async def list_servers() -> ServerListResponse:
            """List all known server instances."""
            servers = [_server_payload(i) for i in self.controller.list_servers()]
            return ServerListResponse(servers=servers, count=len(servers))

        @self.app.post(
            "/servers",
            status_code=status.HTTP_201_CREATED,
            responses={503: {"model": ErrorResponse}},
        )
        async def create_server() -> dict[str, Any]:
            """Create one server instance outside the scaling loop."""
            try:
                instance = await self.controller.create_server_manually()
            except ProvisionerUnavailableError as e:
                raise _http_error(
                    status.HTTP_503_SERVICE_UNAVAILABLE, "PROVISIONER_UNAVAILABLE", e
                ) from e
            return {"success": True, "server": _server_payload(instance)}

        @self.app.delete(
            "/servers/{server_id}",
            responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
        )
        async def delete_server(server_id: str) -> dict[str, Any]:
            """Drain and delete one server instance."""
            try:
                await self.controller.delete_server_manually(server_id)
            except UnknownInstanceError as e:
                raise _http_error(
                    status.HTTP_404_NOT_FOUND, "UNKNOWN_INSTANCE", e
                ) from e
            except ProvisionerUnavailableError as e:
                raise _http_error(
                    status.HTTP_503_SERVICE_UNAVAILABLE, "PROVISIONER_UNAVAILABLE", e
                ) from e
            return {"success": True, "message": f"Server {server_id} deleted"}

        @self.app.post(
            "/placements",
            response_model=PlacementResponse,
            responses={
                409: {"model": ErrorResponse},
                503: {"model": ErrorResponse},
            },
        )
        async def request_placement(request: PlacementRequest) -> PlacementResponse:
            """Place a player on the least loaded running instance."""
            try:
                placement = await self.controller.request_placement(request.player_id)
            except NoCapacityError as e:
                raise _http_error(
                    status.HTTP_503_SERVICE_UNAVAILABLE,
                    "NO_CAPACITY",
                    e,
                    {"running_instances": e.running_instances},
                ) from e
            except AlreadyBoundError as e:
                raise _http_error(
                    status.HTTP_409_CONFLICT,
                    "ALREADY_BOUND",
                    e,
                    {"server_id": e.server_id},
                ) from e
            except ValueError as e:
                raise _http_error(
                    status.HTTP_422_UNPROCESSABLE_ENTITY, "VALIDATION_ERROR", e
                ) from e
            return PlacementResponse.from_placement(placement)

        @self.app.delete("/placements/{player_id}")
        async def release_placement(player_id: str) -> dict[str, Any]:
            """Release a player's placement. Unknown players succeed."""
            await self.controller.release_placement(player_id)
            return {"success": True}

        @self.app.get(self.metrics_path)
        async def metrics() -> Response:
            return Response(content=get_metrics_text(), media_type=METRICS_CONTENT_TYPE)

        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket) -> None:
            """Client matchmaking protocol.

            Clients send ``{"type": "request-server", "player_id": ...}`` and
            ``{"type": "player-disconnect", "player_id": ...}`` messages.
            """
            await websocket.accept()
            self.websocket_connections.add(websocket)
            self.logger.info("Client connected", client=str(websocket.client))

            try:
                while True:
                    raw = await websocket.receive_text()
                    try:
                        message = json.loads(raw)
                    except json.JSONDecodeError:
                        await websocket.send_json(
                            {"type": "error", "message": "Invalid JSON"}
                        )
                        continue
                    reply = await self.handle_message(message)
                    if reply is not None:
                        await websocket.send_json(reply)
            except WebSocketDisconnect:
                self.logger.info("Client disconnected", client=str(websocket.client))
            finally:
                self.websocket_connections.discard(websocket)

    async def handle_message(self, message: Any) -> dict[str, Any] | None:
        """Handle one WebSocket message and build the reply, if any."""
        if not isinstance(message, dict):
            return {"type": "error", "message": "Message must be a JSON object"}

        message_type = message.get("type")
        player_id = message.get("player_id") or message.get("playerId")

        if message_type not in ("request-server", "player-disconnect"):
            return {"type": "error", "message": f"Unknown message type: {message_type}"}
        if not isinstance(player_id, str) or not player_id.strip():
            return {"type": "error", "message": "player_id is required"}

        if message_type == "player-disconnect":
            await self.controller.release_placement(player_id)
            return None

        return await self._assign_server(player_id)

    async def _assign_server(self, player_id: str) -> dict[str, Any]:
        try:
            placement = await self.controller.request_placement(player_id)
        except (AlreadyBoundError, ValueError) as e:
            return {"type": "error", "message": str(e)}
        except NoCapacityError:
            return await self._on_no_capacity(player_id)

        return {
            "type": "server-assigned",
            "server_id": placement.server_id,
            "server_ip": placement.host,
            "server_port": placement.port,
        }

    async def _on_no_capacity(self, player_id: str) -> dict[str, Any]:
        if not self.provision_on_demand:
            return {"type": "error", "message": "Unable to assign server"}

        try:
            instance = await self.controller.provision_on_demand()
        except ProvisionerUnavailableError as e:
            self.logger.error(
                "On-demand provisioning failed", player_id=player_id, error=str(e)
            )
            return {"type": "error", "message": "Unable to assign server"}

        if instance is None:
            return {"type": "error", "message": "Unable to assign server"}

        return {
            "type": "server-assigned",
            "server_id": instance.id,
            "message": RETRY_MESSAGE,
        }

    async def shutdown(self) -> None:
        """Close client connections, then stop the controller."""
        for websocket in list(self.websocket_connections):
            try:
                await websocket.close()
            except RuntimeError:
                pass  # Already closed by the client
        self.websocket_connections.clear()

        config = self.controller.config
        handler = GracefulShutdownHandler(
            timeout_seconds=config.shutdown_timeout_seconds
            + config.provisioner_timeout_seconds
        )
        handler.register_shutdown_task(self.controller.shutdown())
        await handler.shutdown()
        self.logger.info("Web adapter shutdown complete")


def create_web_adapter(
    controller: PoolController,
    health_config: HealthCheckConfig | None = None,
    provision_on_demand: bool = True,
    allowed_origins: list[str] | None = None,
    metrics_path: str = "/metrics",
    environment: str = "development",
) -> WebAdapter:
    """Create a Web adapter instance.

    Args:
        controller: Pool controller instance
        health_config: Health check settings
        provision_on_demand: Create an instance when a WebSocket client
            finds no capacity
        allowed_origins: CORS origins
        metrics_path: Path of the Prometheus endpoint
        environment: Environment name reported by ``/health``

    Returns:
        WebAdapter instance
    """
    return WebAdapter(
        controller=controller,
        health_checker=HealthChecker(health_config or HealthCheckConfig(), controller),
        provision_on_demand=provision_on_demand,
        allowed_origins=allowed_origins,
        metrics_path=metrics_path,
        environment=environment,
    )


def create_app(config: "Config | None" = None) -> FastAPI:
    """Build the full application from configuration.

    Sets up logging and tracing, builds the provisioner selected by
    ``config.provisioner.backend`` and wires controller, health checks and
    metrics into a FastAPI app. Usable as a uvicorn factory.

    Args:
        config: Loaded configuration; loaded from file and environment
            when omitted

    Returns:
        FastAPI application
    """
    from serverpool.config import create_provisioner, load_config, validate_config
    from serverpool.config.environment import get_config_file_path
    from serverpool.utils.metrics_exporter import (
        export_config_info,
        export_system_info,
    )
    from serverpool.utils.telemetry import setup_logging, setup_tracing

    if config is None:
        config = load_config(get_config_file_path())
    validate_config(config)

    setup_logging(
        log_level=config.logging.level,
        log_format=config.logging.format,
        enable_pii_redaction=config.logging.enable_pii_redaction,
    )

    if config.metrics.enabled:
        export_config_info(config)
        export_system_info()

    controller = PoolController(
        config.pool,
        create_provisioner(config),
        template=config.provisioner.template(),
    )
    adapter = create_web_adapter(
        controller,
        health_config=config.health,
        provision_on_demand=config.server.provision_on_demand,
        allowed_origins=config.server.allowed_origins,
        metrics_path=config.metrics.path,
        environment=config.environment,
    )

    if config.tracing.enabled:
        setup_tracing(
            service_name=config.tracing.service_name,
            otlp_endpoint=config.tracing.otlp_endpoint,
            app=adapter.app,
        )

    return adapter.app
