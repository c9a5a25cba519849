"""
API路由汇总
"""

from fastapi import APIRouter

from . import comics, credits, images

api_router = APIRouter()

api_router.include_router(comics.router, prefix="/api")
api_router.include_router(credits.router, prefix="/api")
api_router.include_router(images.router, prefix="/api")
