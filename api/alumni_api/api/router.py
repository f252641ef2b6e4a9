from fastapi import APIRouter

from alumni_api.api.routes import admin, auth, content, health, media, members

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(auth.router, prefix="/auth", tags=["identity"])
api_router.include_router(members.router, prefix="/members", tags=["directory"])
api_router.include_router(media.router, prefix="/media", tags=["media"])
api_router.include_router(content.router, tags=["public"])
api_router.include_router(admin.router, prefix="/admin", tags=["moderation"])
