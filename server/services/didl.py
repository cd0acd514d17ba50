from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import quote
from xml.sax.saxutils import escape as xml_escape


# Spotify as registered on the target speaker. Opaque, never recomputed.
SPOTIFY_SERVICE_ID = 12
SPOTIFY_FLAGS = 8224
SPOTIFY_SN = 7
SPOTIFY_URI_SUFFIX = f"?sid={SPOTIFY_SERVICE_ID}&flags={SPOTIFY_FLAGS}&sn={SPOTIFY_SN}"

_TRACK_REFERENCE = re.compile(r"spotify:track:([A-Za-z0-9]+)")

_QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


class InvalidReferenceError(ValueError):
    pass


@dataclass
class TrackMetadata:
    title: str = "Unknown Track"
    artist: str = "Unknown Artist"
    album: str = "Unknown Album"
    album_art_uri: str = ""
    track_id: str = ""

    @classmethod
    def from_values(
        cls,
        *,
        title: Optional[str] = None,
        artist: Optional[str] = None,
        album: Optional[str] = None,
        album_art_uri: Optional[str] = None,
        track_id: Optional[str] = None,
    ) -> "TrackMetadata":
        """Build metadata from loosely-typed input, falling back to placeholders."""

        return cls(
            title=title or cls.title,
            artist=artist or cls.artist,
            album=album or cls.album,
            album_art_uri=album_art_uri or "",
            track_id=track_id or "",
        )

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "TrackMetadata":
        data = data or {}
        return cls.from_values(
            title=data.get("title"),
            artist=data.get("artist"),
            album=data.get("album"),
            album_art_uri=data.get("album_art_uri"),
            track_id=data.get("track_id"),
        )


def escape_xml(value: object) -> str:
    return xml_escape("" if value is None else str(value), _QUOTE_ENTITIES)


def track_id(reference: str) -> str:
    match = _TRACK_REFERENCE.fullmatch(reference or "")
    if not match:
        raise InvalidReferenceError(f"Invalid Spotify URI format: {reference}")
    return match.group(1)


def _speaker_uri(reference: str) -> str:
    return f"x-sonos-spotify:{quote(reference, safe='')}{SPOTIFY_URI_SUFFIX}"


def to_playable_uri(reference: str) -> str:
    """spotify:track:<id> -> x-sonos-spotify:spotify%3Atrack%3A<id>?sid=12&flags=8224&sn=7"""

    return _speaker_uri(f"spotify:track:{track_id(reference)}")


def to_radio_uri(reference: str) -> str:
    """Same as ``to_playable_uri`` but seeds the speaker's track radio."""

    return _speaker_uri(f"spotify:trackradio:{track_id(reference)}")


def build_display_document(metadata: Optional[TrackMetadata] = None) -> str:
    """Return the DIDL-Lite document the speaker shows for a Spotify track.

    The track id is optional here; without it the item id and resource are
    left empty but the document stays well-formed.
    """

    meta = metadata or TrackMetadata()
    tid = meta.track_id or ""
    resource_uri = f"x-sonos-spotify:spotify%3atrack%3a{tid}{SPOTIFY_URI_SUFFIX}" if tid else ""
    album_art = (
        f"<upnp:albumArtURI>{escape_xml(meta.album_art_uri)}</upnp:albumArtURI>" if meta.album_art_uri else ""
    )
    return (
        '<DIDL-Lite xmlns:dc="http://purl.org/dc/elements/1.1/" '
        'xmlns:upnp="urn:schemas-upnp-org:metadata-1-0/upnp/" '
        'xmlns:r="urn:schemas-rinconnetworks-com:metadata-1-0/" '
        'xmlns="urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/">'
        f'<item id="00032020spotify%3atrack%3a{escape_xml(tid)}" parentID="" restricted="true">'
        f"<dc:title>{escape_xml(meta.title)}</dc:title>"
        "<upnp:class>object.item.audioItem.musicTrack</upnp:class>"
        f"<dc:creator>{escape_xml(meta.artist)}</dc:creator>"
        f"<upnp:album>{escape_xml(meta.album)}</upnp:album>"
        f"{album_art}"
        f'<res protocolInfo="sonos.com-spotify:*:audio/x-spotify:*">{escape_xml(resource_uri)}</res>'
        "</item>"
        "</DIDL-Lite>"
    )
