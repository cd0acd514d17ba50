from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import HTMLResponse


log = logging.getLogger("sonosrelay")

_SUCCESS_PAGE = (
    "<h1>Success!</h1><p>{provider} authentication complete. You can close this window.</p>"
    "<script>setTimeout(() => window.close(), 2000);</script>"
)


def create_auth_router(
    *,
    exchange_sonos_code: Callable[[str], Awaitable[Any]],
    exchange_spotify_code: Callable[[str], Awaitable[Any]],
    auth_status: Callable[[], dict],
) -> APIRouter:
    router = APIRouter()

    async def _handle_callback(
        provider: str,
        code: Optional[str],
        error: Optional[str],
        exchange: Callable[[str], Awaitable[Any]],
    ) -> HTMLResponse:
        if error:
            return HTMLResponse(status_code=400, content=f"<h1>Error</h1><p>{provider} error: {error}</p>")
        if not code:
            return HTMLResponse(
                status_code=400,
                content=f"<h1>Error</h1><p>No authorization code provided in the {provider} callback.</p>",
            )
        log.info("Received %s authorization code, exchanging for tokens...", provider)
        try:
            await exchange(code)
        except HTTPException as exc:
            log.error("Error exchanging code for %s tokens: %s", provider, exc.detail)
            return HTMLResponse(
                status_code=500,
                content=f"<h1>Error</h1><p>Could not get {provider} tokens. Check the console for details.</p>",
            )
        log.info("%s authentication successful!", provider)
        return HTMLResponse(content=_SUCCESS_PAGE.format(provider=provider))

    @router.get("/sonos_callback")
    async def sonos_callback(
        code: Optional[str] = Query(default=None),
        error: Optional[str] = Query(default=None),
    ) -> HTMLResponse:
        return await _handle_callback("Sonos", code, error, exchange_sonos_code)

    @router.get("/spotify_callback")
    async def spotify_callback(
        code: Optional[str] = Query(default=None),
        error: Optional[str] = Query(default=None),
    ) -> HTMLResponse:
        return await _handle_callback("Spotify", code, error, exchange_spotify_code)

    @router.get("/auth/status")
    async def status() -> dict:
        return auth_status()

    return router
