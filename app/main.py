import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from app.config import Settings, settings as default_settings
from app.errors import InternalError, OrderServiceError
from app.metrics import get_metrics_bytes, get_metrics_content_type
from app.routes import live, notifications, orders
from app.services import Services, open_services

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """
    Build the app. Services are opened in the lifespan from settings unless
    prebuilt ones are passed in (tests do this to share stores with the app).
    """
    settings = settings or default_settings
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.services = services or await open_services(settings)
        logger.info("Order service started")
        yield
        await app.state.services.close()
        logger.info("Order service stopped")

    app = FastAPI(title="Order Lifecycle Service", lifespan=lifespan)
    app.include_router(orders.router)
    app.include_router(notifications.router)
    app.include_router(live.router)

    @app.exception_handler(OrderServiceError)
    async def order_service_error(request: Request, exc: OrderServiceError) -> JSONResponse:
        if isinstance(exc, InternalError) or exc.status_code >= 500:
            logger.error("Internal error on %s %s: %s", request.method, request.url.path, exc.message)
            return _error_response(500, "internal_error", "Internal server error")
        return _error_response(exc.status_code, exc.code, exc.message)

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return _error_response(500, "internal_error", "Internal server error")

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus scrape endpoint: transitions, bus traffic, open live connections."""
        return Response(
            content=get_metrics_bytes(),
            media_type=get_metrics_content_type(),
        )

    return app


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "code": code, "message": message},
    )


app = create_app()
