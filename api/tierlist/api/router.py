from fastapi import APIRouter

from tierlist.api.routes import files, health, reviews, tiers, users

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(tiers.router, prefix="/tiers", tags=["tiers"])
api_router.include_router(reviews.router, prefix="/reviews", tags=["reviews"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(files.router, prefix="/userfile", tags=["files"])
