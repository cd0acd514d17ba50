from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from services.didl import TrackMetadata


log = logging.getLogger("sonosrelay")


class DirectPlayPayload(BaseModel):
    uri: Optional[str] = Field(default=None, description="Spotify track URI, spotify:track:XXXXX")
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None


def create_upnp_router(
    *,
    speaker_ip: str,
    speaker_port: int,
    test_connectivity: Callable[[], Awaitable[dict]],
    play_track: Callable[..., Awaitable[dict]],
    pause_spotify: Callable[[], Awaitable[None]],
    volume: Optional[int],
) -> APIRouter:
    router = APIRouter()

    @router.get("/upnp/test")
    async def upnp_test() -> JSONResponse:
        log.info("Testing UPnP connectivity to Sonos speaker...")
        result = await test_connectivity()
        if result.get("success"):
            return JSONResponse(
                status_code=200,
                content={
                    "success": True,
                    "message": f"UPnP connection to {speaker_ip}:{speaker_port} successful",
                    "speaker_ip": speaker_ip,
                },
            )
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": result.get("error"),
                "speaker_ip": speaker_ip,
                "hint": "Check SONOS_SPEAKER_IP environment variable",
            },
        )

    @router.post("/upnp/play")
    async def upnp_play(payload: DirectPlayPayload) -> JSONResponse:
        uri = (payload.uri or "").strip()
        if not uri.startswith("spotify:track:"):
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": 'Missing or invalid "uri" in request body. Must be spotify:track:XXXXX format.',
                },
            )

        log.info("Direct UPnP play request: %s", uri)
        await pause_spotify()
        metadata = TrackMetadata.from_values(title=payload.title, artist=payload.artist, album=payload.album)
        result = await play_track(uri, metadata, volume)
        if result.get("success"):
            return JSONResponse(
                status_code=200,
                content={"success": True, "message": f"Playing {payload.title or uri} via UPnP"},
            )
        return JSONResponse(status_code=500, content={"success": False, "error": result.get("error")})

    return router
