"""FastAPI application entrypoint for the seashare gateway."""

import argparse
from contextlib import asynccontextmanager
from pathlib import Path

import yaml
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from seashare import __version__
from seashare.api import raw_router, upload_router
from seashare.backend_client import SeafileClient, create_seafile_client
from seashare.config import GatewayConfig, Settings, settings
from seashare.core.download import DownloadRelay
from seashare.core.upload import UploadRelay
from seashare.errors import InternalError, UserError
from seashare.middleware import TrimTrailingSlashMiddleware
from seashare.observability.logging import (
    RequestIDMiddleware,
    configure_logging,
    current_request_id,
    get_logger,
)
from seashare.observability.metrics import (
    MetricsMiddleware,
    metrics_endpoint,
    setup_metrics,
)

logger = get_logger(__name__)


def load_config(settings: Settings) -> GatewayConfig:
    """Load configuration from file or environment."""
    if settings.config_file and settings.config_file.exists():
        logger.info("Loading config from file", config_file=str(settings.config_file))
        with open(settings.config_file) as f:
            config_dict = yaml.safe_load(f) or {}
        return GatewayConfig.from_dict(config_dict)
    else:
        logger.info("Using environment-based configuration")
        return settings.to_gateway_config()


def install_services(app: FastAPI, client: SeafileClient) -> None:
    """Attach the shared backend client and both relay engines to the app."""
    config: GatewayConfig = app.state.config
    app.state.seafile_client = client
    app.state.upload_relay = UploadRelay(
        client,
        public_scheme=config.relay.public_scheme,
        channel_capacity=config.relay.channel_capacity,
    )
    app.state.download_relay = DownloadRelay(client)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Creates the process-wide Seafile client unless one was injected, and
    closes it on shutdown.
    """
    config: GatewayConfig = app.state.config
    configure_logging(
        level=config.logging.level,
        json_logs=config.logging.json_logs,
        enable_access_logs=config.logging.enable_access_logs,
    )

    owns_client = getattr(app.state, "seafile_client", None) is None
    if owns_client:
        logger.info("Connecting to Seafile", base_url=config.backend.base_url)
        install_services(app, create_seafile_client(config.backend))

    if config.metrics.enabled:
        setup_metrics("seashare", __version__)

    logger.info("seashare started")

    yield

    logger.info("Shutting down seashare...")
    if owns_client:
        await app.state.seafile_client.close()
    logger.info("Shutdown complete")


def create_app(
    config: GatewayConfig | None = None,
    seafile_client: SeafileClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Gateway configuration (loaded from settings if omitted)
        seafile_client: Pre-built backend client; the caller keeps ownership
    """
    config = config or load_config(settings)

    app = FastAPI(
        title="seashare",
        description="Streaming share gateway for Seafile",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    if seafile_client is not None:
        install_services(app, seafile_client)

    # Middleware (last added runs first)
    if config.metrics.enabled:
        app.add_middleware(MetricsMiddleware)
    app.add_middleware(TrimTrailingSlashMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(upload_router)
    app.include_router(raw_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    if config.metrics.enabled:
        app.get("/metrics", include_in_schema=False)(metrics_endpoint)

    add_exception_handlers(app)

    return app


def _internal_error_response() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal server error",
            "request_id": current_request_id(),
        },
    )


def add_exception_handlers(app: FastAPI) -> None:
    """Map gateway errors to client responses."""

    @app.exception_handler(UserError)
    async def user_error_handler(request: Request, exc: UserError) -> JSONResponse:
        logger.info(
            "Request rejected",
            reason=exc.reason,
            status_code=exc.status_code,
            path=request.url.path,
            method=request.method,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.reason, "request_id": current_request_id()},
        )

    @app.exception_handler(InternalError)
    async def internal_error_handler(request: Request, exc: InternalError) -> JSONResponse:
        logger.error(
            "Internal error occurred",
            error_type=type(exc).__name__,
            error=exc.message,
            context=exc.context,
            path=request.url.path,
            method=request.method,
            exc_info=exc,
        )
        return _internal_error_response()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error(
            "Unhandled exception",
            exception_type=type(exc).__name__,
            exception_message=str(exc),
            path=request.url.path,
            method=request.method,
            exc_info=exc,
        )
        return _internal_error_response()


# Create the app instance
app = create_app()


def main(argv: list[str] | None = None) -> None:
    """Run the server: ``seashare [config_file]``."""
    import uvicorn

    parser = argparse.ArgumentParser(prog="seashare", description=__doc__)
    parser.add_argument("config_file", nargs="?", type=Path, help="YAML configuration file")
    args = parser.parse_args(argv)

    run_settings = settings
    if args.config_file is not None:
        if not args.config_file.exists():
            parser.error(f"config file not found: {args.config_file}")
        run_settings = Settings(config_file=args.config_file)

    config = load_config(run_settings)
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_config=None,
        access_log=config.logging.enable_access_logs,
    )


if __name__ == "__main__":
    main()
