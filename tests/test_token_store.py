"""Tests for token persistence and reinjection."""

import json

from services.token_store import OAuthToken


def test_replace_persists_and_load_restores(make_store):
    store = make_store("Spotify", OAuthToken(access_token="abc", refresh_token="r1", expires_in=3600))

    data = json.loads(store.path.read_text())
    assert data["access_token"] == "abc"
    assert data["refresh_token"] == "r1"

    fresh = make_store("Spotify")
    token = fresh.load()
    assert token.access_token == "abc"
    assert fresh.authorization_header() == {"Authorization": "Bearer abc"}


def test_missing_file_loads_nothing(make_store):
    store = make_store("Spotify")
    assert store.load() is None
    assert store.authorization_header() == {}


def test_corrupted_file_is_deleted(make_store):
    store = make_store("Sonos")
    store.path.write_text("{not json")
    assert store.load() is None
    assert not store.path.exists()


def test_token_without_required_scope_is_deleted(make_store):
    store = make_store("Sonos", OAuthToken(access_token="abc", scope="other"), required_scope="playback-control-all")
    assert store.load() is None
    assert not store.path.exists()


def test_token_with_required_scope_loads(make_store):
    store = make_store(
        "Sonos",
        OAuthToken(access_token="abc", scope="playback-control-all"),
        required_scope="playback-control-all",
    )
    assert store.load().access_token == "abc"


def test_refresh_payload_keeps_previous_refresh_token():
    previous = OAuthToken(access_token="old", refresh_token="keep", scope="s")
    refreshed = OAuthToken.from_payload({"access_token": "new", "expires_in": 3600}, previous=previous)

    assert refreshed.access_token == "new"
    assert refreshed.refresh_token == "keep"
    assert refreshed.scope == "s"
    assert 3500 < refreshed.seconds_until_expiry() <= 3600


def test_expiry_is_never_shorter_than_a_minute():
    token = OAuthToken.from_payload({"access_token": "x", "expires_in": 5})
    assert token.seconds_until_expiry() > 55
