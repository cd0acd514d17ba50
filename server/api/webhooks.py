from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import APIRouter, Body, HTTPException
from fastapi.responses import PlainTextResponse


log = logging.getLogger("sonosrelay")


def clean_favorite_name(raw: str) -> str:
    return (raw or "").replace("%20", " ").replace("_", " ").strip()


def create_webhooks_router(
    *,
    submit: Callable[..., None],
    require_cloud: Callable[[], None],
    pause_spotify: Callable[[], Awaitable[None]],
    play_favorite: Callable[[str], Awaitable[Any]],
    switch_to_line_in: Callable[[], Awaitable[Any]],
    set_group_volume: Callable[[int], Awaitable[Any]],
    arrival_delay: float,
) -> APIRouter:
    router = APIRouter()

    @router.post("/play/{favorite_name}", response_class=PlainTextResponse, status_code=202)
    async def play_favorite_webhook(favorite_name: str) -> str:
        require_cloud()
        cleaned = clean_favorite_name(favorite_name)
        if not cleaned:
            raise HTTPException(status_code=400, detail="Favorite name is required")
        log.info("Received webhook trigger for favorite: %s", cleaned)
        submit("pause spotify", pause_spotify)
        submit(f"favorite '{cleaned}'", lambda: play_favorite(cleaned), delay=arrival_delay)
        return f"Webhook for '{cleaned}' accepted. Processing playback request."

    @router.post("/line-in", response_class=PlainTextResponse, status_code=202)
    async def line_in_webhook() -> str:
        require_cloud()
        log.info("Received webhook trigger for line-in.")
        submit("pause spotify", pause_spotify)
        submit("line-in", switch_to_line_in)
        return "Webhook for line-in accepted. Processing switch request."

    @router.post("/volume", response_class=PlainTextResponse, status_code=202)
    async def volume_webhook(payload: Any = Body(default=None)) -> str:
        require_cloud()
        volume = payload.get("volume") if isinstance(payload, dict) else None
        if isinstance(volume, float) and volume.is_integer():
            volume = int(volume)
        if isinstance(volume, bool) or not isinstance(volume, int) or not 0 <= volume <= 100:
            raise HTTPException(
                status_code=400,
                detail='Invalid "volume" in request body. It must be a whole number between 0 and 100.',
            )
        level = volume
        log.info("Received volume change request: %s", level)
        submit(f"volume {level}", lambda: set_group_volume(level))
        return f"Volume change request for '{level}' accepted."

    return router
