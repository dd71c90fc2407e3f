"""Composition of API routers."""

from __future__ import annotations

from fastapi import APIRouter

from wagateway.api.chats import router as chats_router
from wagateway.api.groups import router as groups_router
from wagateway.api.health import router as health_router
from wagateway.api.misc import router as misc_router
from wagateway.api.sessions import router as sessions_router
from wagateway.api.tools import router as tools_router

api_router = APIRouter()
api_router.include_router(sessions_router)
api_router.include_router(chats_router)
api_router.include_router(groups_router)
api_router.include_router(misc_router)
api_router.include_router(tools_router)
api_router.include_router(health_router)
