from fastapi import APIRouter

from vitals.services.github_client import fetch_client

router = APIRouter()


@router.get("/rate-limit")
async def rate_limit() -> dict:
    return {
        "tracked": fetch_client.rate_limit.to_dict(),
        "cooldown_remaining": round(fetch_client.cooldown_remaining, 1),
    }
