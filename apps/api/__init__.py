"""FastAPI application factory."""
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apps.api.routes.data_layers import router as data_layers_router
from apps.api.routes.epc import router as epc_router
from apps.api.routes.health import router as health_router
from apps.api.routes.maps import router as maps_router
from apps.api.routes.nature import router as nature_router
from apps.api.routes.payments import router as payments_router
from apps.api.routes.plans import router as plans_router
from core.errors import ConfigurationError, ReportParseError, UpstreamError

logger = logging.getLogger(__name__)


async def _configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.warning("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


async def _upstream_error(request: Request, exc: UpstreamError) -> JSONResponse:
    logger.error("%s %s: %s API failure: %s", request.method, request.url.path, exc.service, exc)
    return JSONResponse(status_code=502, content={"detail": f"{exc.service} API error: {exc}"})


async def _report_parse_error(request: Request, exc: ReportParseError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


def create_app() -> FastAPI:
    app = FastAPI(title="Estate Energy API", version="1.0.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ConfigurationError, _configuration_error)
    app.add_exception_handler(UpstreamError, _upstream_error)
    app.add_exception_handler(ReportParseError, _report_parse_error)

    app.include_router(health_router)
    app.include_router(epc_router)
    app.include_router(data_layers_router)
    app.include_router(maps_router)
    app.include_router(nature_router)
    app.include_router(plans_router)
    app.include_router(payments_router)
    return app


__all__ = ["create_app"]
