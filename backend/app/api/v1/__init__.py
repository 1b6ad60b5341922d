"""API v1 router aggregation."""

from fastapi import APIRouter

from app.api.v1.auth import router as auth_router
from app.api.v1.bookmarks import router as bookmarks_router
from app.api.v1.jobs import router as jobs_router
from app.api.v1.products import router as products_router
from app.api.v1.projects import router as projects_router
from app.api.v1.recommendations import router as recommendations_router
from app.api.v1.search import router as search_router
from app.api.v1.views import router as views_router
from app.api.v1.ws import router as ws_router

router = APIRouter(prefix="/api/v1")

router.include_router(auth_router)
router.include_router(products_router)
router.include_router(bookmarks_router)
router.include_router(views_router)
router.include_router(recommendations_router)
router.include_router(projects_router)
router.include_router(jobs_router)
router.include_router(search_router)
router.include_router(ws_router)
