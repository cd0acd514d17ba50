"""Tests for search-rank-play orchestration."""

import asyncio

import httpx
from fastapi import HTTPException

from services.playback import TrackPlayer
from services.ranking import SearchCandidate
from services.search_play import NOT_FOUND_ERROR, SearchAndPlayService
from services.spotify_api import SpotifyService
from services.token_store import OAuthToken


async def _no_sleep(_seconds):
    return None


def _service(sonos, results=None, error=None, paused=None):
    async def search(query, artist, track):
        if error is not None:
            raise error
        return [SearchCandidate(**vars(c)) for c in results or []]

    async def pause():
        paused.append(True)

    return SearchAndPlayService(
        search=search,
        player=TrackPlayer(sonos=sonos, sleep=_no_sleep),
        pause_source=pause if paused is not None else None,
        volume=30,
    )


CANDIDATES = [
    SearchCandidate(name="Starlight (Live)", artists=["Muse"], popularity=40, reference="spotify:track:b"),
    SearchCandidate(name="Starlight", artists=["Muse"], popularity=70, reference="spotify:track:a", album="BHAR"),
    SearchCandidate(name="Starlight", artists=["Tribute"], popularity=10, reference="spotify:track:c"),
]


def test_best_match_is_played_with_radio(sonos, speaker):
    paused = []
    result = asyncio.run(_service(sonos, CANDIDATES, paused=paused).search_and_play("muse starlight"))

    assert result["success"] is True
    assert result["error"] is None
    assert result["track"]["uri"] == "spotify:track:a"
    assert result["track"]["album"] == "BHAR"
    assert result["track"]["relevance_score"] == 177.5
    assert [alt["uri"] for alt in result["alternatives"]] == ["spotify:track:b", "spotify:track:c"]
    assert paused == [True]
    assert speaker.actions() == ["SetVolume", "SetAVTransportURI", "Play", "SetAVTransportURI", "Play"]


def test_radio_disabled_plays_single_track(sonos, speaker):
    result = asyncio.run(_service(sonos, CANDIDATES).search_and_play("muse starlight", radio=False))
    assert result["success"] is True
    assert speaker.actions() == ["SetVolume", "SetAVTransportURI", "Play"]


def test_no_results_makes_no_speaker_call(sonos, speaker):
    paused = []
    result = asyncio.run(_service(sonos, [], paused=paused).search_and_play(artist="Nobody", track="Nothing"))

    assert result == {
        "success": False,
        "error": NOT_FOUND_ERROR,
        "query": {"q": "", "artist": "Nobody", "track": "Nothing"},
    }
    assert speaker.calls == []
    assert paused == []


def test_search_failure_is_returned_not_raised(sonos, speaker):
    error = HTTPException(status_code=401, detail="Spotify not authorized")
    result = asyncio.run(_service(sonos, error=error).search_and_play("muse"))
    assert result["success"] is False
    assert result["error"] == "Spotify not authorized"
    assert speaker.calls == []


def test_speaker_failure_keeps_track_details(sonos, speaker):
    speaker.unreachable = True
    result = asyncio.run(_service(sonos, CANDIDATES).search_and_play("muse starlight"))
    assert result["success"] is False
    assert "SOAP request error" in result["error"]
    assert result["track"]["uri"] == "spotify:track:a"


def test_non_json_search_reply_resolves_to_failure(sonos, speaker, make_store):
    spotify = SpotifyService(
        store=make_store("Spotify", OAuthToken(access_token="tok")),
        client_id="cid",
        client_secret="secret",
        redirect_uri="http://localhost/cb",
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>")),
    )
    service = SearchAndPlayService(search=spotify.search_tracks, player=TrackPlayer(sonos=sonos, sleep=_no_sleep))

    result = asyncio.run(service.search_and_play("muse"))

    assert result["success"] is False
    assert "invalid response" in result["error"]
    assert speaker.calls == []
