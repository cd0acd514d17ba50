import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from pathlib import Path

import uvicorn
from fastapi import FastAPI, HTTPException

from api.auth import create_auth_router
from api.health import create_health_router
from api.search import create_search_router
from api.upnp import create_upnp_router
from api.webhooks import create_webhooks_router
from services.playback import TrackPlayer
from services.playback_queue import PlaybackQueue
from services.search_play import SearchAndPlayService
from services.soap import SoapTransport, SpeakerAddress
from services.sonos import SonosService
from services.sonos_cloud import SONOS_SCOPE, SonosCloudService
from services.spotify_api import SpotifyService
from services.token_store import TokenStore


logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
log = logging.getLogger("sonosrelay")

BASE_DIR = Path(__file__).resolve().parent
SERVER_HOST = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT = int(os.getenv("SERVER_PORT", "5001"))
SONOS_SPEAKER_IP = os.getenv("SONOS_SPEAKER_IP", "192.168.1.211").strip()
SONOS_SPEAKER_PORT = int(os.getenv("SONOS_SPEAKER_PORT", "1400"))
SONOS_SOAP_TIMEOUT = float(os.getenv("SONOS_SOAP_TIMEOUT", "10"))
RADIO_SETTLE_SECONDS = float(os.getenv("RADIO_SETTLE_SECONDS", "2.0"))
PLAYBACK_VOLUME = int(os.getenv("PLAYBACK_VOLUME", "30"))
ARRIVAL_DELAY_SECONDS = max(0.0, float(os.getenv("ARRIVAL_DELAY_SECONDS", "0") or 0))
TARGET_DEVICE_NAME = os.getenv("TARGET_DEVICE_NAME", "").strip()
SONOS_CLIENT_ID = os.getenv("SONOS_CLIENT_ID", "").strip()
SONOS_CLIENT_SECRET = os.getenv("SONOS_CLIENT_SECRET", "").strip()
SONOS_REDIRECT_URI = os.getenv("SONOS_REDIRECT_URI", "http://localhost:5001/sonos_callback")
SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID", "").strip()
SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET", "").strip()
SPOTIFY_REDIRECT_URI = os.getenv("SPOTIFY_REDIRECT_URI", "http://localhost:5001/spotify_callback")
SPOTIFY_MARKET = os.getenv("SPOTIFY_MARKET", "GB").strip() or "GB"
SONOS_TOKEN_PATH = Path(os.getenv("SONOS_TOKEN_PATH", str(BASE_DIR / ".sonos_tokens.json")))
SPOTIFY_TOKEN_PATH = Path(os.getenv("SPOTIFY_TOKEN_PATH", str(BASE_DIR / ".spotify_tokens.json")))
CLOUD_HTTP_TIMEOUT = float(os.getenv("CLOUD_HTTP_TIMEOUT", "10"))
TOKEN_REFRESH_CHECK_INTERVAL = int(os.getenv("TOKEN_REFRESH_CHECK_INTERVAL", "60"))
TOKEN_REFRESH_LEEWAY = int(os.getenv("TOKEN_REFRESH_LEEWAY", "180"))
TOKEN_REFRESH_FAILURE_BACKOFF = int(os.getenv("TOKEN_REFRESH_FAILURE_BACKOFF", "120"))


speaker_address = SpeakerAddress(SONOS_SPEAKER_IP, SONOS_SPEAKER_PORT)
sonos_service = SonosService(transport=SoapTransport(speaker_address, timeout=SONOS_SOAP_TIMEOUT))
track_player = TrackPlayer(sonos=sonos_service, settle_delay=RADIO_SETTLE_SECONDS)

sonos_tokens = TokenStore(SONOS_TOKEN_PATH, name="Sonos", required_scope=SONOS_SCOPE)
spotify_tokens = TokenStore(SPOTIFY_TOKEN_PATH, name="Spotify")
sonos_cloud = SonosCloudService(
    store=sonos_tokens,
    client_id=SONOS_CLIENT_ID,
    client_secret=SONOS_CLIENT_SECRET,
    redirect_uri=SONOS_REDIRECT_URI,
    target_group_name=TARGET_DEVICE_NAME,
    timeout=CLOUD_HTTP_TIMEOUT,
)
spotify_service = SpotifyService(
    store=spotify_tokens,
    client_id=SPOTIFY_CLIENT_ID,
    client_secret=SPOTIFY_CLIENT_SECRET,
    redirect_uri=SPOTIFY_REDIRECT_URI,
    market=SPOTIFY_MARKET,
    timeout=CLOUD_HTTP_TIMEOUT,
)
search_play_service = SearchAndPlayService(
    search=spotify_service.search_tracks,
    player=track_player,
    pause_source=spotify_service.pause_playback,
    volume=PLAYBACK_VOLUME,
)
playback_queue = PlaybackQueue()

token_refresh_tasks: list[asyncio.Task] = []


def require_cloud() -> None:
    if not sonos_cloud.configured:
        raise HTTPException(
            status_code=503,
            detail="Sonos Cloud is not configured (SONOS_CLIENT_ID, SONOS_CLIENT_SECRET, TARGET_DEVICE_NAME)",
        )


def auth_status() -> dict:
    return {
        "sonos": {
            "authorized": sonos_tokens.current is not None,
            "authorize_url": sonos_cloud.authorize_url(),
        },
        "spotify": {
            "authorized": spotify_tokens.current is not None,
            "authorize_url": spotify_service.authorize_url(),
        },
    }


async def play_favorite(name: str) -> None:
    log.info("Wait finished. Attempting to play '%s' on Sonos.", name)
    await sonos_cloud.play_favorite(name, volume=PLAYBACK_VOLUME)


app = FastAPI(title="Sonos Relay", version="0.1.0")

app.include_router(create_health_router(speaker=str(speaker_address)))
app.include_router(
    create_auth_router(
        exchange_sonos_code=sonos_cloud.exchange_code,
        exchange_spotify_code=spotify_service.exchange_code,
        auth_status=auth_status,
    )
)
app.include_router(
    create_webhooks_router(
        submit=playback_queue.submit,
        require_cloud=require_cloud,
        pause_spotify=spotify_service.pause_playback,
        play_favorite=play_favorite,
        switch_to_line_in=sonos_cloud.switch_to_line_in,
        set_group_volume=sonos_cloud.set_group_volume,
        arrival_delay=ARRIVAL_DELAY_SECONDS,
    )
)
app.include_router(
    create_search_router(
        search_and_play=search_play_service.search_and_play,
        search_album=spotify_service.search_album,
        play_album=lambda tracks, album: track_player.play_album(tracks, album, PLAYBACK_VOLUME),
    )
)
app.include_router(
    create_upnp_router(
        speaker_ip=SONOS_SPEAKER_IP,
        speaker_port=SONOS_SPEAKER_PORT,
        test_connectivity=sonos_service.test_connectivity,
        play_track=track_player.play_track,
        pause_spotify=spotify_service.pause_playback,
        volume=PLAYBACK_VOLUME,
    )
)


async def _token_refresh_loop(store: TokenStore, refresh: Callable[[], Awaitable[object]]) -> None:
    while True:
        try:
            await asyncio.sleep(max(TOKEN_REFRESH_CHECK_INTERVAL, 5))
            token = store.current
            if not token or not token.refresh_token:
                continue
            seconds_left = token.seconds_until_expiry()
            if seconds_left is None:
                seconds_left = -1
            if seconds_left > TOKEN_REFRESH_LEEWAY:
                continue
            try:
                await refresh()
            except HTTPException as exc:
                log.warning("Background %s refresh failed: %s", store.name, exc.detail)
                await asyncio.sleep(TOKEN_REFRESH_FAILURE_BACKOFF)
        except asyncio.CancelledError:
            break
        except Exception:
            log.exception("%s token refresh loop crashed", store.name)
            await asyncio.sleep(TOKEN_REFRESH_FAILURE_BACKOFF)


def _log_setup_hints(sonos_ok: bool, spotify_ok: bool) -> None:
    if not sonos_ok:
        log.warning("--- FIRST-TIME SONOS SETUP --- Visit this URL to authorize with Sonos: %s", sonos_cloud.authorize_url())
    if not spotify_ok:
        log.warning(
            "--- FIRST-TIME SPOTIFY SETUP --- Visit this URL to authorize with Spotify: %s",
            spotify_service.authorize_url(),
        )


@app.on_event("startup")
async def _startup_events() -> None:
    if not sonos_cloud.configured:
        log.error(
            "SONOS_CLIENT_ID, SONOS_CLIENT_SECRET, and TARGET_DEVICE_NAME must be set; "
            "favorite, line-in and volume webhooks are disabled."
        )
    sonos_ok = sonos_tokens.load() is not None
    spotify_ok = spotify_tokens.load() is not None
    _log_setup_hints(sonos_ok, spotify_ok)

    await playback_queue.start()
    if not token_refresh_tasks:
        token_refresh_tasks.append(asyncio.create_task(_token_refresh_loop(sonos_tokens, sonos_cloud.refresh)))
        token_refresh_tasks.append(asyncio.create_task(_token_refresh_loop(spotify_tokens, spotify_service.refresh)))
    log.info("Sonos UPnP endpoint: %s", speaker_address)


@app.on_event("shutdown")
async def _shutdown_events() -> None:
    for task in token_refresh_tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    token_refresh_tasks.clear()
    await playback_queue.stop()


def main() -> None:
    log.info("Server listening on http://%s:%s for dynamic webhooks.", SERVER_HOST, SERVER_PORT)
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT)


if __name__ == "__main__":
    main()
