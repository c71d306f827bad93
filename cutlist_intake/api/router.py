"""API v1 router."""

from fastapi import APIRouter

from cutlist_intake.api.routes import parse, sessions

api_router = APIRouter()

api_router.include_router(parse.router, tags=["Parsing"])
api_router.include_router(sessions.router, tags=["Template Sessions"])
