from fastapi import APIRouter

from uploader.api.v1.endpoints import upload

api_router = APIRouter()
api_router.include_router(upload.router, prefix="/rest", tags=["upload"])
