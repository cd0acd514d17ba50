"""Tests for the Sonos Control API flows."""

import asyncio
import json

import httpx
import pytest

from services.sonos_cloud import SONOS_SCOPE, SonosCloudService
from services.token_store import OAuthToken


class FakeControlApi:
    def __init__(self):
        self.posts: list[tuple[str, dict]] = []
        self.favorites = [{"id": "7", "name": "Morning Jazz"}, {"id": "9", "name": "Arrival Mix"}]

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/control/api/v1", "")
        if request.method == "POST":
            self.posts.append((path, json.loads(request.content) if request.content else {}))
            return httpx.Response(200, json={})
        if path == "/households":
            return httpx.Response(200, json={"households": [{"id": "HH1"}]})
        if path == "/households/HH1/groups":
            return httpx.Response(200, json={"groups": [{"id": "G1", "name": "Living Room"}]})
        if path == "/households/HH1/favorites":
            return httpx.Response(200, json={"items": self.favorites})
        return httpx.Response(404)


@pytest.fixture
def control_api():
    return FakeControlApi()


@pytest.fixture
def cloud(make_store, control_api):
    store = make_store(
        "Sonos",
        OAuthToken(access_token="tok", refresh_token="r", scope=SONOS_SCOPE),
        required_scope=SONOS_SCOPE,
    )
    return SonosCloudService(
        store=store,
        client_id="cid",
        client_secret="secret",
        redirect_uri="http://localhost:5001/sonos_callback",
        target_group_name="living room",
        transport=httpx.MockTransport(control_api.handler),
    )


def test_configured_requires_credentials_and_target(make_store):
    service = SonosCloudService(
        store=make_store("Sonos"),
        client_id="cid",
        client_secret="",
        redirect_uri="http://localhost/cb",
        target_group_name="Living Room",
    )
    assert service.configured is False


def test_find_group_matches_name_case_insensitively(cloud):
    assert asyncio.run(cloud.find_group()) == ("HH1", "G1")


def test_play_favorite_sets_volume_then_loads_favorite(cloud, control_api):
    assert asyncio.run(cloud.play_favorite("arrival mix", volume=30)) is True
    assert control_api.posts == [
        ("/groups/G1/groupVolume", {"volume": 30}),
        ("/groups/G1/favorites", {"favoriteId": "9", "playOnCompletion": True, "action": "REPLACE"}),
    ]


def test_unknown_favorite_is_not_played(cloud, control_api):
    assert asyncio.run(cloud.play_favorite("Nope")) is False
    assert control_api.posts == []


def test_switch_to_line_in_pauses_first(cloud, control_api):
    assert asyncio.run(cloud.switch_to_line_in()) is True
    assert [path for path, _ in control_api.posts] == [
        "/groups/G1/playback/pause",
        "/groups/G1/playback/lineIn",
        "/groups/G1/playback/play",
    ]


def test_missing_group_aborts_volume_change(cloud, control_api):
    cloud._target_group_name = "Kitchen"
    assert asyncio.run(cloud.set_group_volume(20)) is False
    assert control_api.posts == []


def test_authorize_url_requests_playback_scope(cloud):
    url = cloud.authorize_url()
    assert url.startswith("https://api.sonos.com/login/v3/oauth?")
    assert "scope=playback-control-all" in url
    assert "state=sonos-auth" in url
