from fastapi import APIRouter, Depends
from typing import Dict, Any

from ..config import settings
from ..providers.sideshift import SideShiftClient, get_sideshift_client

router = APIRouter()


@router.get("/healthz")
async def health_check(client: SideShiftClient = Depends(get_sideshift_client)) -> Dict[str, Any]:
    """Health check endpoint that verifies SideShift reachability"""

    provider_status = {"sideshift": await client.health_check()}

    sideshift = provider_status["sideshift"]
    healthy = sideshift["status"] == "healthy" and sideshift.get("create_shift", False)

    return {
        "status": "healthy" if healthy else "degraded",
        "providers": provider_status,
        "telegram_configured": settings.has_bot_token,
        "webhook_secret_configured": settings.has_webhook_secret,
    }
