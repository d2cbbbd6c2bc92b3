from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.articles import router as articles_router
from backend.app.api.v1.endpoints.flights import router as flights_router
from backend.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from backend.app.api.v1.endpoints.delivery_notes import router as delivery_notes_router
from backend.app.api.v1.endpoints.discrepancies import router as discrepancies_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(articles_router, tags=["articles"])
router.include_router(flights_router, tags=["flights"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(delivery_notes_router, tags=["delivery_notes"])
router.include_router(discrepancies_router, tags=["discrepancies"])
