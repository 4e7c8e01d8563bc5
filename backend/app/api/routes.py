from fastapi import APIRouter, Request

from app.api.auth import router as auth_router
from app.api.limiter import limiter
from app.api.messages import router as messages_router
from app.config import get_settings

settings = get_settings()

router = APIRouter()

router.include_router(auth_router, prefix="/auth", tags=["auth"])
router.include_router(messages_router)


@router.get("/", tags=["root"])
@limiter.limit(settings.rate_limit_default)
def read_root(request: Request) -> dict[str, str]:
    return {"message": "Welcome to the XeroxChat API"}
