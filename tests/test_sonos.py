"""Tests for the single-purpose speaker operations."""

import asyncio

import pytest

from services.didl import TrackMetadata
from services.soap import RENDERING_CONTROL_PATH, TransportError


def test_load_track_sets_escaped_uri_and_metadata(sonos, speaker):
    meta = TrackMetadata(title="Starlight", artist="Muse", album="Black Holes & Revelations")
    asyncio.run(sonos.load_track("spotify:track:3skn2lauGk7Dx6bVIt5DVj", meta))

    assert speaker.actions() == ["SetAVTransportURI"]
    body = speaker.bodies("SetAVTransportURI")[0]
    assert "<InstanceID>0</InstanceID>" in body
    assert (
        "<CurrentURI>x-sonos-spotify:spotify%3Atrack%3A3skn2lauGk7Dx6bVIt5DVj"
        "?sid=12&amp;flags=8224&amp;sn=7</CurrentURI>" in body
    )
    assert "&lt;DIDL-Lite" in body
    assert "Black Holes &amp;amp; Revelations" in body
    assert meta.track_id == ""


def test_load_track_rejects_invalid_reference_before_any_call(sonos, speaker):
    with pytest.raises(ValueError):
        asyncio.run(sonos.load_track("spotify:album:123"))
    assert speaker.calls == []


def test_play_sends_speed_one(sonos, speaker):
    asyncio.run(sonos.play())
    assert "<Speed>1</Speed>" in speaker.bodies("Play")[0]


def test_set_volume_goes_to_rendering_control(sonos, speaker):
    asyncio.run(sonos.set_volume(30))
    call = speaker.calls[0]
    assert call["action"] == "SetVolume"
    assert call["path"] == RENDERING_CONTROL_PATH
    assert "<Channel>Master</Channel><DesiredVolume>30</DesiredVolume>" in call["body"]


def test_transport_state_is_parsed(sonos):
    assert asyncio.run(sonos.get_transport_state()) == "PLAYING"


def test_connectivity_reports_success_and_failure(sonos, speaker):
    ok = asyncio.run(sonos.test_connectivity())
    assert ok["success"] is True
    assert "PLAYING" in ok["data"]

    speaker.unreachable = True
    failed = asyncio.run(sonos.test_connectivity())
    assert failed["success"] is False
    assert "SOAP request error" in failed["error"]


def test_errors_propagate_without_retry(sonos, speaker):
    speaker.fail_actions.add("Pause")
    with pytest.raises(TransportError):
        asyncio.run(sonos.pause())
    assert speaker.actions() == ["Pause"]


def test_device_uid_comes_from_description(sonos):
    assert asyncio.run(sonos.get_device_uid()) == "RINCON_000E58A0123401400"


def test_play_from_queue_switches_to_queue_and_seeks(sonos, speaker):
    asyncio.run(sonos.play_from_queue())
    assert speaker.actions() == ["SetAVTransportURI", "Seek", "Play"]
    assert "x-rincon-queue:RINCON_000E58A0123401400#0" in speaker.bodies("SetAVTransportURI")[0]
    assert "<Unit>TRACK_NR</Unit><Target>1</Target>" in speaker.bodies("Seek")[0]


@pytest.mark.parametrize("level", [150, -5])
def test_set_volume_passes_out_of_range_levels_through(sonos, speaker, level):
    asyncio.run(sonos.set_volume(level))
    assert f"<DesiredVolume>{level}</DesiredVolume>" in speaker.bodies("SetVolume")[0]


def test_pause_and_stop_send_only_instance_id(sonos, speaker):
    asyncio.run(sonos.pause())
    asyncio.run(sonos.stop())
    for action in ("Pause", "Stop"):
        body = speaker.bodies(action)[0]
        assert f'<u:{action} xmlns:u="urn:schemas-upnp-org:service:AVTransport:1"><InstanceID>0</InstanceID></u:{action}>' in body
