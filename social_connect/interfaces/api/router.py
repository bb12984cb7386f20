from fastapi import APIRouter

from social_connect.interfaces.api.connections import router as connections_router
from social_connect.interfaces.api.health import router as health_router
from social_connect.interfaces.api.instagram_webhook import router as instagram_webhook_router
from social_connect.interfaces.api.integrations import router as integrations_router
from social_connect.interfaces.api.publishing import router as publishing_router
from social_connect.interfaces.api.sessions import router as sessions_router
from social_connect.interfaces.api.statistics import router as statistics_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(sessions_router)
api_router.include_router(connections_router)
api_router.include_router(integrations_router)
api_router.include_router(publishing_router)
api_router.include_router(statistics_router)
api_router.include_router(instagram_webhook_router)
