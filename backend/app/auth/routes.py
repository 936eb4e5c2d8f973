from __future__ import annotations

from fastapi import APIRouter, HTTPException
from app.auth.jwt import create_access_token
from app.config import settings

router = APIRouter()


@router.post("/auth/dev-token")
def dev_token():
    """Issue a dispatcher token for local use and demos.

    Disabled in production, where tokens come from the admin identity provider.
    """
    if settings.is_production:
        raise HTTPException(status_code=404, detail="Not found")
    return {"access_token": create_access_token("dispatcher"), "token_type": "bearer"}
