from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Optional

import httpx
from fastapi import HTTPException

from services.didl import TrackMetadata
from services.playback import TrackPlayer
from services.ranking import SearchCandidate, rank


log = logging.getLogger("sonosrelay")

NOT_FOUND_ERROR = "No matching tracks found"
MAX_ALTERNATIVES = 4


class SearchAndPlayService:
    def __init__(
        self,
        *,
        search: Callable[[str, str, str], Awaitable[list[SearchCandidate]]],
        player: TrackPlayer,
        pause_source: Optional[Callable[[], Awaitable[None]]] = None,
        volume: Optional[int] = None,
    ) -> None:
        self._search = search
        self._player = player
        self._pause_source = pause_source
        self._volume = volume

    @staticmethod
    def _track_payload(best: SearchCandidate) -> dict:
        return {
            "name": best.name,
            "artist": best.primary_artist,
            "album": best.album,
            "uri": best.reference,
            "popularity": best.popularity,
            "relevance_score": best.score,
            "image_url": best.image_url,
        }

    async def search_and_play(
        self,
        query: Optional[str] = "",
        artist: Optional[str] = "",
        track: Optional[str] = "",
        radio: bool = True,
    ) -> dict:
        query, artist, track = query or "", artist or "", track or ""
        query_echo = {"q": query, "artist": artist, "track": track}
        log.info('Search and play request: query="%s", artist="%s", track="%s", radio=%s', query, artist, track, radio)

        try:
            candidates = await self._search(query, artist, track)
        except (HTTPException, httpx.RequestError, ValueError) as exc:
            message = getattr(exc, "detail", None) or str(exc)
            log.error("Search and play error: %s", message)
            return {"success": False, "error": str(message), "query": query_echo}

        ranked = rank(candidates, query, artist, track)
        if not ranked:
            return {"success": False, "error": NOT_FOUND_ERROR, "query": query_echo}

        best = ranked[0]
        log.info(
            'Best match: "%s by %s" (popularity: %s, relevance: %s)',
            best.name,
            best.primary_artist,
            best.popularity,
            best.score,
        )

        if self._pause_source is not None:
            await self._pause_source()

        metadata = TrackMetadata.from_values(
            title=best.name,
            artist=best.primary_artist,
            album=best.album,
            album_art_uri=best.image_url,
        )
        if radio:
            outcome = await self._player.play_track_with_radio(best.reference, metadata, self._volume)
        else:
            outcome = await self._player.play_track(best.reference, metadata, self._volume)

        return {
            "success": bool(outcome.get("success")),
            "track": self._track_payload(best),
            "alternatives": [c.summary() for c in ranked[1 : 1 + MAX_ALTERNATIVES]],
            "error": outcome.get("error"),
        }
