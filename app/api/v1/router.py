from fastapi import APIRouter

from app.api.v1.endpoints import (
    # Affiliate commission settlement
    affiliates,
)

api_router = APIRouter(prefix="/api/v1")

# ==================== Affiliate Settlement ====================
api_router.include_router(
    affiliates.router,
    prefix="/affiliates",
    tags=["Affiliate Settlement"]
)
