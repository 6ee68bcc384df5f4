from fastapi import APIRouter

from coupon_engine.api.v1 import coupons
from coupon_engine.api.v1 import coupons_admin
from coupon_engine.core.metrics import snapshot as metrics_snapshot

api_router = APIRouter()

api_router.include_router(coupons.router)
api_router.include_router(coupons_admin.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()
