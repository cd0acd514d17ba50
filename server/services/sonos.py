import logging
from dataclasses import replace
from typing import Optional
from xml.etree import ElementTree

from services.didl import TrackMetadata, build_display_document, escape_xml, to_playable_uri, track_id
from services.soap import (
    AV_TRANSPORT_PATH,
    AV_TRANSPORT_SERVICE,
    RENDERING_CONTROL_PATH,
    RENDERING_CONTROL_SERVICE,
    SoapTransport,
    TransportError,
)


log = logging.getLogger("sonosrelay")


class SonosService:
    """Single-purpose UPnP operations against one speaker.

    Every method propagates ``TransportError`` unchanged and none of them retry.
    """

    def __init__(self, *, transport: SoapTransport) -> None:
        self._soap = transport

    @property
    def address(self):
        return self._soap.address

    @staticmethod
    def _arguments(arguments: dict[str, object]) -> str:
        return "".join(f"<{k}>{escape_xml(v)}</{k}>" for k, v in arguments.items())

    async def _av_transport(self, action: str, arguments: dict[str, object]) -> str:
        return await self._soap.send_action(
            AV_TRANSPORT_PATH,
            action,
            AV_TRANSPORT_SERVICE,
            self._arguments(arguments),
        )

    async def set_av_transport_uri(self, uri: str, metadata: str = "") -> str:
        log.info("[UPnP] Setting AVTransportURI to: %s", uri)
        return await self._av_transport(
            "SetAVTransportURI",
            {
                "InstanceID": 0,
                "CurrentURI": uri,
                "CurrentURIMetaData": metadata or "",
            },
        )

    async def load_track(self, reference: str, metadata: Optional[TrackMetadata] = None) -> str:
        uri = to_playable_uri(reference)
        meta = replace(metadata or TrackMetadata(), track_id=track_id(reference))
        return await self.set_av_transport_uri(uri, build_display_document(meta))

    async def play(self) -> str:
        log.info("[UPnP] Sending Play command")
        return await self._av_transport("Play", {"InstanceID": 0, "Speed": 1})

    async def pause(self) -> str:
        log.info("[UPnP] Sending Pause command")
        return await self._av_transport("Pause", {"InstanceID": 0})

    async def stop(self) -> str:
        log.info("[UPnP] Sending Stop command")
        return await self._av_transport("Stop", {"InstanceID": 0})

    async def set_volume(self, level: int) -> str:
        # The speaker validates the range itself.
        log.info("[UPnP] Setting volume to %s", level)
        return await self._soap.send_action(
            RENDERING_CONTROL_PATH,
            "SetVolume",
            RENDERING_CONTROL_SERVICE,
            self._arguments({"InstanceID": 0, "Channel": "Master", "DesiredVolume": level}),
        )

    async def get_transport_info(self) -> str:
        log.info("[UPnP] Getting transport info")
        return await self._av_transport("GetTransportInfo", {"InstanceID": 0})

    async def get_transport_state(self) -> Optional[str]:
        xml_text = await self.get_transport_info()
        try:
            root = ElementTree.fromstring(xml_text)
        except ElementTree.ParseError as exc:
            log.warning("Sonos GetTransportInfo parse failed (speaker=%s): %s", self.address, exc)
            return None
        state = root.findtext(".//{*}CurrentTransportState")
        return state.strip() if state else None

    async def test_connectivity(self) -> dict:
        log.info("[UPnP] Testing connection to Sonos at %s", self.address)
        try:
            data = await self.get_transport_info()
        except TransportError as exc:
            log.error("[UPnP] Connection failed: %s", exc)
            return {"success": False, "error": str(exc)}
        log.info("[UPnP] Connection successful!")
        return {"success": True, "data": data}

    async def get_device_uid(self) -> str:
        """Return the speaker's RINCON_ identifier from its device description."""

        xml_text = await self._soap.fetch("/xml/device_description.xml")
        try:
            root = ElementTree.fromstring(xml_text)
        except ElementTree.ParseError as exc:
            raise TransportError(f"Device description is not valid XML: {exc}") from exc
        udn = (root.findtext(".//{*}UDN") or "").strip()
        if udn.lower().startswith("uuid:"):
            udn = udn[5:]
        if not udn.startswith("RINCON_"):
            raise TransportError(f"Device description has no RINCON UDN: {udn or 'missing'}")
        return udn

    async def clear_queue(self) -> str:
        return await self._av_transport("RemoveAllTracksFromQueue", {"InstanceID": 0})

    async def add_to_queue(self, uri: str, metadata: str = "") -> str:
        return await self._av_transport(
            "AddURIToQueue",
            {
                "InstanceID": 0,
                "EnqueuedURI": uri,
                "EnqueuedURIMetaData": metadata or "",
                "DesiredFirstTrackNumberEnqueued": 0,
                "EnqueueAsNext": 0,
            },
        )

    async def seek_track(self, number: int) -> str:
        return await self._av_transport("Seek", {"InstanceID": 0, "Unit": "TRACK_NR", "Target": number})

    async def play_from_queue(self, start: int = 1) -> str:
        uid = await self.get_device_uid()
        await self.set_av_transport_uri(f"x-rincon-queue:{uid}#0")
        await self.seek_track(start)
        return await self.play()
