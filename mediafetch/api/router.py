from fastapi import APIRouter

from mediafetch.api.resolve.routes import router as resolve_router

router = APIRouter()
router.include_router(resolve_router)
