"""
OAuth Routes

    GET /api/v1/oauth/providers             active providers
    GET /api/v1/oauth/{provider}/login      redirect to the provider's consent page
    GET /api/v1/oauth/{provider}/callback   exchange the code for a token pair
"""

from collections.abc import AsyncIterator

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.database import get_db
from hookcms.services.oauth_service import OAuthService

router = APIRouter(tags=["OAuth"])

HTTP_TIMEOUT = 10.0


async def get_http_client() -> AsyncIterator[httpx.AsyncClient]:
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        yield client


@router.get("/providers")
async def list_providers(db: AsyncSession = Depends(get_db)):
    return await OAuthService(db).list_providers()


@router.get("/{provider}/login")
async def oauth_login(provider: str, db: AsyncSession = Depends(get_db)) -> RedirectResponse:
    url = await OAuthService(db).build_login_url(provider)
    return RedirectResponse(url, status_code=302)


@router.get("/{provider}/callback")
async def oauth_callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    db: AsyncSession = Depends(get_db),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """Validate the state, fetch the provider profile and log the matching user in."""
    return await OAuthService(db, http_client).handle_callback(provider, code, state)
