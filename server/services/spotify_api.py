from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx
from fastapi import HTTPException

from services.ranking import SearchCandidate
from services.token_store import OAuthToken, TokenStore


log = logging.getLogger("sonosrelay")

SPOTIFY_API_BASE = "https://api.spotify.com/v1"
SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_SCOPE = "user-modify-playback-state user-read-playback-state"


def parse_spotify_error(detail: Any) -> dict:
    payload: Any = detail
    if isinstance(detail, str):
        try:
            payload = json.loads(detail)
        except json.JSONDecodeError:
            payload = {"error": {"message": detail}}
    if not isinstance(payload, dict):
        return {"message": str(detail)}
    error = payload.get("error")
    if isinstance(error, dict):
        return {
            "status": error.get("status"),
            "message": error.get("message"),
            "reason": error.get("reason"),
        }
    return {"message": payload.get("message") or str(detail)}


def build_search_query(query: Optional[str], artist: Optional[str], track: Optional[str]) -> str:
    if artist and track:
        return f"artist:{artist} track:{track}"
    if artist:
        return f"artist:{artist}"
    if track:
        return f"track:{track}"
    return query or ""


class SpotifyService:
    def __init__(
        self,
        *,
        store: TokenStore,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        market: str = "GB",
        timeout: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._store = store
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._market = market
        self._timeout = float(timeout)
        self._transport = transport

    @property
    def store(self) -> TokenStore:
        return self._store

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def authorize_url(self) -> str:
        params = {
            "client_id": self._client_id,
            "response_type": "code",
            "redirect_uri": self._redirect_uri,
            "scope": SPOTIFY_SCOPE,
        }
        return f"{SPOTIFY_AUTHORIZE_URL}?{httpx.QueryParams(params)}"

    async def _token_request(self, data: dict) -> httpx.Response:
        async with self._client() as client:
            return await client.post(
                SPOTIFY_TOKEN_URL,
                data=data,
                auth=(self._client_id, self._client_secret),
            )

    async def exchange_code(self, code: str) -> OAuthToken:
        resp = await self._token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self._redirect_uri}
        )
        if resp.status_code >= 400:
            log.error("Error exchanging code for Spotify tokens: %s", resp.text)
            raise HTTPException(status_code=400, detail="Failed to exchange Spotify code")
        return self._store.replace(OAuthToken.from_payload(resp.json()))

    async def refresh(self) -> OAuthToken:
        log.info("Refreshing Spotify token...")
        token = self._store.current or self._store.load()
        if not token or not token.refresh_token:
            raise HTTPException(status_code=401, detail="Spotify not authorized")
        resp = await self._token_request({"grant_type": "refresh_token", "refresh_token": token.refresh_token})
        if resp.status_code >= 400:
            log.error("Could not refresh Spotify token. You may need to re-authenticate. %s", resp.text)
            if resp.status_code in {400, 401}:
                self._store.delete()
            raise HTTPException(status_code=401, detail="Failed to refresh Spotify token")
        refreshed = self._store.replace(OAuthToken.from_payload(resp.json(), previous=token))
        log.info("Spotify token refreshed successfully.")
        return refreshed

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Call the Web API, refreshing the token and retrying once on 401."""

        if not (self._store.current or self._store.load()):
            raise HTTPException(status_code=401, detail="Spotify not authorized")
        url = f"{SPOTIFY_API_BASE}{path}"
        headers = dict(kwargs.pop("headers", {}) or {})
        async with self._client() as client:
            resp = await client.request(method, url, headers={**headers, **self._store.authorization_header()}, **kwargs)
        if resp.status_code == 401:
            log.info("Spotify token expired, refreshing...")
            await self.refresh()
            async with self._client() as client:
                resp = await client.request(
                    method, url, headers={**headers, **self._store.authorization_header()}, **kwargs
                )
        return resp

    async def _get_json(self, path: str, params: dict) -> dict:
        resp = await self.request("GET", path, params=params)
        if resp.status_code >= 400:
            detail = parse_spotify_error(resp.text)
            log.error("Spotify request %s failed: %s", path, detail)
            raise HTTPException(status_code=resp.status_code, detail=detail.get("message") or resp.text)
        try:
            data = resp.json()
        except ValueError:
            log.error("Spotify request %s returned a non-JSON body (status=%s)", path, resp.status_code)
            raise HTTPException(status_code=502, detail=f"Spotify returned an invalid response for {path}")
        return data if isinstance(data, dict) else {}

    async def search_tracks(
        self,
        query: Optional[str] = "",
        artist: Optional[str] = "",
        track: Optional[str] = "",
        limit: int = 10,
    ) -> list[SearchCandidate]:
        search_query = build_search_query(query, artist, track)
        if not search_query.strip():
            log.error("Search error: No query provided.")
            return []
        log.info('Searching Spotify for: "%s"', search_query)
        data = await self._get_json(
            "/search",
            {"q": search_query, "type": "track", "limit": limit, "market": self._market},
        )
        items = (data.get("tracks") or {}).get("items") or []
        candidates = [SearchCandidate.from_spotify(item) for item in items if isinstance(item, dict)]
        if not candidates:
            log.info("No tracks found for query.")
        return candidates

    async def search_album(self, query: str, artist: str = "") -> Optional[dict]:
        search_query = f"{query} {artist}" if artist else query
        log.info('Searching Spotify for album: "%s"', search_query)
        data = await self._get_json(
            "/search",
            {"q": search_query, "type": "album", "limit": 5, "market": self._market},
        )
        albums = [a for a in (data.get("albums") or {}).get("items") or [] if isinstance(a, dict)]
        if not albums:
            log.info("No albums found for query.")
            return None

        best = albums[0]
        if artist:
            needle = artist.lower()
            for album in albums:
                if any(needle in (ar.get("name") or "").lower() for ar in album.get("artists") or []):
                    best = album
                    break

        album_artists = best.get("artists") or [{}]
        images = best.get("images") or [{}]
        summary = {
            "id": best.get("id"),
            "name": best.get("name"),
            "artist": album_artists[0].get("name"),
            "image_url": images[0].get("url") or "",
            "total_tracks": best.get("total_tracks"),
        }
        log.info('Album matched: "%s" by %s [%s]', summary["name"], summary["artist"], summary["id"])

        tracks = await self._get_json(f"/albums/{best.get('id')}/tracks", {"limit": 50, "market": self._market})
        return {"album": summary, "tracks": tracks.get("items") or []}

    async def pause_playback(self) -> None:
        """Pause whatever Spotify is playing. "No active device" is not an error."""

        log.info("Attempting to pause Spotify...")
        try:
            resp = await self.request("PUT", "/me/player/pause")
        except (HTTPException, httpx.RequestError) as exc:
            log.error("An error occurred during Spotify pause attempt: %s", getattr(exc, "detail", exc))
            return
        if resp.status_code < 400:
            log.info("Successfully paused Spotify.")
            return
        parsed = parse_spotify_error(resp.text)
        reason = (parsed.get("reason") or "").strip().upper()
        if resp.status_code == 404 or reason == "NO_ACTIVE_DEVICE":
            log.info("No active Spotify device found to pause.")
            return
        log.error("An error occurred during Spotify pause attempt: %s", parsed)
