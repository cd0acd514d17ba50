from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from services.search_play import NOT_FOUND_ERROR


log = logging.getLogger("sonosrelay")

SEARCH_USAGE = {
    "queryString": "POST /search?q=artist+song",
    "structured": "POST /search?artist=Muse&track=Starlight",
    "jsonBody": 'POST /search with body { "q": "muse starlight" }',
}


async def _json_body(request: Request) -> dict:
    raw = await request.body()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def _field(request: Request, body: dict, name: str) -> str:
    value = request.query_params.get(name) or body.get(name) or ""
    return str(value).strip()


def parse_radio_flag(value: Any) -> bool:
    return not (value is False or (isinstance(value, str) and value.strip().lower() == "false"))


def search_response(result: dict) -> JSONResponse:
    if result.get("success"):
        track = result.get("track") or {}
        return JSONResponse(
            status_code=200,
            content={
                "success": True,
                "message": f"Now playing: {track.get('name')} by {track.get('artist')}",
                "track": track,
                "alternatives": result.get("alternatives") or [],
            },
        )
    status = 404 if result.get("error") == NOT_FOUND_ERROR else 500
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": result.get("error"), "query": result.get("query")},
    )


def create_search_router(
    *,
    search_and_play: Callable[..., Awaitable[dict]],
    search_album: Callable[[str, str], Awaitable[Optional[dict]]],
    play_album: Callable[[list[dict], dict], Awaitable[dict]],
) -> APIRouter:
    router = APIRouter()

    @router.post("/search")
    async def search_post(request: Request) -> JSONResponse:
        body = await _json_body(request)
        q = _field(request, body, "q")
        artist = _field(request, body, "artist")
        track = _field(request, body, "track")
        raw_radio = request.query_params.get("radio")
        radio = parse_radio_flag(raw_radio if raw_radio is not None else body.get("radio"))

        if not q and not artist and not track:
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": "Missing search params. Provide ?q=query or ?artist=X&track=Y or JSON body.",
                    "usage": SEARCH_USAGE,
                },
            )

        log.info('Received search request: q="%s", artist="%s", track="%s", radio=%s', q, artist, track, radio)
        result = await search_and_play(q, artist, track, radio=radio)
        return search_response(result)

    @router.get("/search")
    async def search_get(
        q: str = Query(default=""),
        artist: str = Query(default=""),
        track: str = Query(default=""),
    ) -> JSONResponse:
        if not q and not artist and not track:
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": "Missing search parameters",
                    "usage": "GET /search?q=artist+song or GET /search?artist=X&track=Y",
                },
            )
        log.info('Received GET search: q="%s", artist="%s", track="%s"', q, artist, track)
        result = await search_and_play(q, artist, track, radio=True)
        return search_response(result)

    @router.post("/album")
    async def album_post(request: Request) -> JSONResponse:
        body = await _json_body(request)
        q = _field(request, body, "q")
        artist = _field(request, body, "artist")
        if not q and not artist:
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": "Missing search params. Provide ?q=album+name or ?q=album+name&artist=Artist",
                },
            )

        log.info('Album play request: q="%s", artist="%s"', q, artist)
        try:
            found = await search_album(q, artist)
        except HTTPException as exc:
            return JSONResponse(status_code=500, content={"success": False, "error": str(exc.detail)})
        if not found:
            return JSONResponse(status_code=404, content={"success": False, "error": "Album not found on Spotify"})

        album = found.get("album") or {}
        tracks = found.get("tracks") or []
        outcome = await play_album(tracks, album)
        if not outcome.get("success"):
            return JSONResponse(status_code=500, content={"success": False, "error": outcome.get("error")})
        return JSONResponse(
            status_code=200,
            content={
                "success": True,
                "message": f"Now playing album: {album.get('name')} by {album.get('artist')} ({len(tracks)} tracks)",
                "album": album,
                "track_count": len(tracks),
            },
        )

    return router
