from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any, Optional

from services.didl import (
    InvalidReferenceError,
    TrackMetadata,
    build_display_document,
    to_playable_uri,
    to_radio_uri,
    track_id,
)
from services.soap import TransportError
from services.sonos import SonosService


log = logging.getLogger("sonosrelay")

RADIO_SETTLE_SECONDS = 2.0


class TrackPlayer:
    """Sequences whole "play this" operations on one speaker.

    Nothing here raises: every public method resolves to a
    ``{"success": ..., "error": ...}`` dict. Steps that already reached the
    speaker (a volume change, a loaded track) are never rolled back.
    """

    def __init__(
        self,
        *,
        sonos: SonosService,
        settle_delay: float = RADIO_SETTLE_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._sonos = sonos
        self._settle_delay = float(settle_delay)
        self._sleep = sleep

    async def _start_track(self, reference: str, metadata: TrackMetadata, volume: Optional[int]) -> None:
        if volume is not None:
            await self._sonos.set_volume(volume)
        await self._sonos.load_track(reference, metadata)
        await self._sonos.play()
        log.info("[UPnP] Successfully started playing: %s", metadata.title or reference)

    async def play_track(
        self,
        reference: str,
        metadata: Optional[TrackMetadata] = None,
        volume: Optional[int] = None,
    ) -> dict:
        meta = metadata or TrackMetadata()
        try:
            await self._start_track(reference, meta, volume)
        except (TransportError, InvalidReferenceError) as exc:
            log.error("[UPnP] Error playing track: %s", exc)
            return {"success": False, "error": str(exc)}
        return {"success": True, "error": None}

    async def play_track_with_radio(
        self,
        reference: str,
        metadata: Optional[TrackMetadata] = None,
        volume: Optional[int] = None,
    ) -> dict:
        """Play ``reference``, then hand over to the speaker's track radio.

        If the radio switch fails the requested track may already be audible;
        the failure is still reported.
        """

        meta = metadata or TrackMetadata()
        try:
            await self._start_track(reference, meta, volume)

            log.info("[UPnP] Switching to Spotify Radio mode for continuous playback...")
            # The speaker ignores a second URI change until it is streaming.
            await self._sleep(self._settle_delay)

            radio_uri = to_radio_uri(reference)
            radio_meta = replace(meta, title=f"{meta.title} Radio", track_id=track_id(reference))
            await self._sonos.set_av_transport_uri(radio_uri, build_display_document(radio_meta))
            await self._sonos.play()
        except (TransportError, InvalidReferenceError) as exc:
            log.error("[UPnP] Error playing track with radio: %s", exc)
            return {"success": False, "error": str(exc)}
        log.info("[UPnP] Now playing Spotify Radio - similar tracks will auto-queue")
        return {"success": True, "error": None}

    async def play_album(
        self,
        tracks: list[dict],
        album: Optional[dict] = None,
        volume: Optional[int] = None,
    ) -> dict:
        """Replace the speaker queue with ``tracks`` and play it from the top."""

        album = album or {}
        queued = 0
        try:
            if volume is not None:
                await self._sonos.set_volume(volume)
            await self._sonos.clear_queue()
            for item in tracks:
                reference = item.get("uri") or ""
                try:
                    uri = to_playable_uri(reference)
                except InvalidReferenceError:
                    log.warning("Skipping album track with unsupported reference: %s", reference)
                    continue
                artists = item.get("artists") or []
                meta = TrackMetadata.from_values(
                    title=item.get("name"),
                    artist=(artists[0].get("name") if artists else None) or album.get("artist"),
                    album=album.get("name"),
                    album_art_uri=album.get("image_url"),
                    track_id=track_id(reference),
                )
                await self._sonos.add_to_queue(uri, build_display_document(meta))
                queued += 1
            if not queued:
                return {"success": False, "queued": 0, "error": "Album has no playable tracks"}
            await self._sonos.play_from_queue()
        except TransportError as exc:
            log.error("[UPnP] Error playing album: %s", exc)
            return {"success": False, "queued": queued, "error": str(exc)}
        log.info("[UPnP] Now playing album %s (%s tracks)", album.get("name") or "?", queued)
        return {"success": True, "queued": queued, "error": None}
