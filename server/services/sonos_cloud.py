from __future__ import annotations

import logging
from typing import Any, Optional

import httpx
from fastapi import HTTPException

from services.token_store import OAuthToken, TokenStore


log = logging.getLogger("sonosrelay")

SONOS_CONTROL_BASE = "https://api.ws.sonos.com/control/api/v1"
SONOS_AUTHORIZE_URL = "https://api.sonos.com/login/v3/oauth"
SONOS_TOKEN_URL = "https://api.sonos.com/login/v3/oauth/access"
SONOS_SCOPE = "playback-control-all"


class SonosCloudService:
    """Sonos Control API client for the favorite, line-in and group-volume flows."""

    def __init__(
        self,
        *,
        store: TokenStore,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        target_group_name: str,
        timeout: float = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._store = store
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._target_group_name = (target_group_name or "").strip()
        self._timeout = float(timeout)
        self._transport = transport

    @property
    def store(self) -> TokenStore:
        return self._store

    @property
    def configured(self) -> bool:
        return bool(self._client_id and self._client_secret and self._target_group_name)

    @property
    def target_group_name(self) -> str:
        return self._target_group_name

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def authorize_url(self) -> str:
        params = {
            "client_id": self._client_id,
            "response_type": "code",
            "state": "sonos-auth",
            "scope": SONOS_SCOPE,
            "redirect_uri": self._redirect_uri,
        }
        return f"{SONOS_AUTHORIZE_URL}?{httpx.QueryParams(params)}"

    async def _token_request(self, data: dict) -> httpx.Response:
        async with self._client() as client:
            return await client.post(SONOS_TOKEN_URL, data=data, auth=(self._client_id, self._client_secret))

    async def exchange_code(self, code: str) -> OAuthToken:
        resp = await self._token_request(
            {"grant_type": "authorization_code", "code": code, "redirect_uri": self._redirect_uri}
        )
        if resp.status_code >= 400:
            log.error("Error exchanging code for Sonos tokens: %s", resp.text)
            raise HTTPException(status_code=400, detail="Failed to exchange Sonos code")
        return self._store.replace(OAuthToken.from_payload(resp.json()))

    async def refresh(self) -> OAuthToken:
        log.info("Refreshing Sonos token...")
        token = self._store.current or self._store.load()
        if not token or not token.refresh_token:
            log.error("No valid Sonos refresh token found. Cannot refresh. Please re-authenticate.")
            raise HTTPException(status_code=401, detail="Sonos not authorized")
        resp = await self._token_request({"grant_type": "refresh_token", "refresh_token": token.refresh_token})
        if resp.status_code >= 400:
            log.error("Could not refresh Sonos token. You may need to re-authenticate. %s", resp.text)
            if resp.status_code in {400, 401}:
                self._store.delete()
            raise HTTPException(status_code=401, detail="Failed to refresh Sonos token")
        refreshed = self._store.replace(OAuthToken.from_payload(resp.json(), previous=token))
        log.info("Sonos token refreshed successfully.")
        return refreshed

    async def request(self, method: str, path: str, json: Optional[dict] = None) -> Any:
        """Call the Control API, refreshing once on 401. Returns the decoded JSON body."""

        if not (self._store.current or self._store.load()):
            raise HTTPException(status_code=401, detail="Sonos not authorized")
        url = f"{SONOS_CONTROL_BASE}{path}"
        async with self._client() as client:
            resp = await client.request(method, url, json=json, headers=self._store.authorization_header())
        if resp.status_code == 401:
            log.info("Sonos token expired, refreshing...")
            await self.refresh()
            async with self._client() as client:
                resp = await client.request(method, url, json=json, headers=self._store.authorization_header())
        if resp.status_code >= 400:
            raise HTTPException(status_code=resp.status_code, detail=resp.text)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    async def find_group(self) -> Optional[tuple[str, str]]:
        """Return ``(household_id, group_id)`` of the configured target group."""

        log.info("Fetching Sonos households...")
        households = (await self.request("GET", "/households")).get("households") or []
        if not households:
            log.error("No Sonos households found on this account.")
            return None
        household_id = households[0].get("id")
        log.info("Found household ID: %s", household_id)

        log.info("Fetching groups/speakers in household...")
        groups = (await self.request("GET", f"/households/{household_id}/groups")).get("groups") or []
        wanted = self._target_group_name.lower()
        target = next((g for g in groups if (g.get("name") or "").lower() == wanted), None)
        if not target:
            log.warning(
                "Could not find a Sonos speaker or group named '%s'. Available groups: %s",
                self._target_group_name,
                [g.get("name") for g in groups],
            )
            return None
        log.info("Found target group '%s' with ID: %s", target.get("name"), target.get("id"))
        return household_id, target.get("id")

    async def set_group_volume(self, volume: int) -> bool:
        log.info("Attempting to set volume to %s...", volume)
        group = await self.find_group()
        if not group:
            log.error("Could not get Sonos group. Aborting volume change.")
            return False
        _, group_id = group
        await self.request("POST", f"/groups/{group_id}/groupVolume", json={"volume": volume})
        log.info("Successfully set volume to %s.", volume)
        return True

    async def play_favorite(self, name: str, *, volume: Optional[int] = None) -> bool:
        if not name:
            log.error("Playback error: No favorite name was provided.")
            return False
        group = await self.find_group()
        if not group:
            log.error("Could not get Sonos group. Aborting playback.")
            return False
        household_id, group_id = group
        if volume is not None:
            await self.request("POST", f"/groups/{group_id}/groupVolume", json={"volume": volume})

        log.info("Fetching 'My Sonos' favorites...")
        favorites = (await self.request("GET", f"/households/{household_id}/favorites")).get("items") or []
        if not favorites:
            log.error(
                "No favorites found in 'My Sonos'. Add the desired playlist to your Sonos Favorites using the Sonos app."
            )
            return False
        wanted = name.lower()
        target = next((f for f in favorites if (f.get("name") or "").lower() == wanted), None)
        if not target:
            log.error(
                "Could not find a favorite named '%s'. Available favorites: %s",
                name,
                [f.get("name") for f in favorites],
            )
            return False

        log.info("Sending LOAD and PLAY command for favorite '%s' (id=%s)...", target.get("name"), target.get("id"))
        await self.request(
            "POST",
            f"/groups/{group_id}/favorites",
            json={"favoriteId": target.get("id"), "playOnCompletion": True, "action": "REPLACE"},
        )
        log.info("Successfully requested playback of favorite '%s' on '%s'.", name, self._target_group_name)
        return True

    async def switch_to_line_in(self) -> bool:
        group = await self.find_group()
        if not group:
            log.error("Could not get Sonos group. Aborting switch to Line-In.")
            return False
        _, group_id = group
        log.info("Pausing current playback...")
        await self.request("POST", f"/groups/{group_id}/playback/pause")
        log.info("Sending command to switch to Line-In...")
        await self.request("POST", f"/groups/{group_id}/playback/lineIn")
        await self.request("POST", f"/groups/{group_id}/playback/play")
        log.info("Successfully requested switch to Line-In on '%s'.", self._target_group_name)
        return True
