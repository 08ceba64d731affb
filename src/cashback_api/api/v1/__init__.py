from fastapi import APIRouter

from .endpoints import cashback, health, observability

router = APIRouter(prefix="/v1")

router.include_router(health.router, tags=["Health"])
router.include_router(cashback.router)
router.include_router(observability.router)
