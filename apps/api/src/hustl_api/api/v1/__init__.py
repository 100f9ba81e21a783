from fastapi import APIRouter

from .endpoints import health, leaderboard, points

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["Health"])
router.include_router(points.router)
router.include_router(leaderboard.router)
