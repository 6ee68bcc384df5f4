import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from coupon_engine.api.v1 import api_router
from coupon_engine.core.config import settings
from coupon_engine.core.logging_config import configure_logging
from coupon_engine.middleware import RequestLoggingMiddleware
from coupon_engine.schemas.error import ErrorResponse
from coupon_engine.services.coupon_errors import RedemptionRetryError

logger = logging.getLogger(__name__)


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    tags_metadata = [
        {"name": "coupons", "description": "Coupon evaluation, redemption and release for checkout"},
        {"name": "coupons-admin", "description": "Coupon management"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload.model_dump()))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    @app.exception_handler(RedemptionRetryError)
    async def redemption_retry_handler(request: Request, exc: RedemptionRetryError):
        logger.warning("coupon_reservation_retries_exhausted", extra={"coupon_code": exc.coupon_code, "attempts": exc.attempts})
        payload = ErrorResponse(detail="Coupon could not be applied right now, please try again.", code=None)
        return JSONResponse(status_code=503, content=payload.model_dump(), headers={"Retry-After": "1"})

    return app


app = get_application()
