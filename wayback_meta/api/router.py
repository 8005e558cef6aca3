from fastapi import APIRouter

from wayback_meta.api.extraction.routes import router as extraction_router

router = APIRouter()
router.include_router(extraction_router)
