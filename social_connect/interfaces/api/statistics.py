from uuid import UUID

from fastapi import APIRouter, Depends, status

from social_connect.application.services.service_registry import ServiceRegistry
from social_connect.interfaces.api.deps import get_current_user_id, get_services, require_platform

router = APIRouter(prefix="/statistics", tags=["statistics"])


@router.post("/{platform}/refresh", status_code=status.HTTP_200_OK)
async def refresh_statistics(
    platform: str = Depends(require_platform),
    user_id: UUID = Depends(get_current_user_id),
    services: ServiceRegistry = Depends(get_services),
) -> dict:
    result = await services.refresher.refresh(user_id, platform)
    return {
        "platform": result.platform,
        "follower_count": result.follower_count,
        "post_count": result.post_count,
        "engagement_rate": result.engagement_rate,
        "best_day": result.best_day,
        "imported_posts": result.imported_posts,
    }
