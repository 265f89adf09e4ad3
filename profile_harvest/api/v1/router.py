from fastapi import APIRouter

from profile_harvest.api.v1 import users

api_router = APIRouter(prefix="/v1")

api_router.include_router(users.router, prefix="/users", tags=["Users"])
