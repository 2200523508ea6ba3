from __future__ import annotations

from fastapi import Header, HTTPException

from vitals.config import settings


async def github_token(authorization: str | None = Header(default=None)) -> str:
    """Bearer token from the request, else the server's configured token."""
    if authorization:
        scheme, _, token = authorization.partition(" ")
        if scheme.lower() == "bearer" and token.strip():
            return token.strip()
    if settings.github_token:
        return settings.github_token
    raise HTTPException(status_code=401, detail="GitHub token required")
