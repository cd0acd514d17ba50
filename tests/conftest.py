"""Shared fixtures: a recording fake speaker and token stores on tmp paths."""

from typing import Optional

import httpx
import pytest

from services.soap import SoapTransport, SpeakerAddress
from services.sonos import SonosService
from services.token_store import OAuthToken, TokenStore


DEVICE_DESCRIPTION = (
    '<?xml version="1.0"?>'
    '<root xmlns="urn:schemas-upnp-org:device-1-0">'
    "<device><friendlyName>Living Room</friendlyName>"
    "<UDN>uuid:RINCON_000E58A0123401400</UDN></device>"
    "</root>"
)

TRANSPORT_INFO = (
    '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"><s:Body>'
    '<u:GetTransportInfoResponse xmlns:u="urn:schemas-upnp-org:service:AVTransport:1">'
    "<CurrentTransportState>PLAYING</CurrentTransportState>"
    "<CurrentTransportStatus>OK</CurrentTransportStatus>"
    "</u:GetTransportInfoResponse></s:Body></s:Envelope>"
)

UPNP_FAULT = (
    '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/"><s:Body><s:Fault>'
    "<faultcode>s:Client</faultcode><faultstring>UPnPError</faultstring>"
    '<detail><UPnPError xmlns="urn:schemas-upnp-org:control-1-0">'
    "<errorCode>714</errorCode><errorDescription>Illegal MIME-type</errorDescription>"
    "</UPnPError></detail></s:Fault></s:Body></s:Envelope>"
)


class FakeSpeaker:
    """Records every SOAP action it receives and answers like a Sonos player."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.fail_actions: set[str] = set()
        self.unreachable = False

    def actions(self) -> list[str]:
        return [call["action"] for call in self.calls]

    def bodies(self, action: str) -> list[str]:
        return [call["body"] for call in self.calls if call["action"] == action]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if request.method == "GET":
            if request.url.path == "/xml/device_description.xml":
                return httpx.Response(200, text=DEVICE_DESCRIPTION)
            return httpx.Response(404, text="not found")
        soap_action = request.headers.get("SOAPAction", "").strip('"')
        action = soap_action.split("#", 1)[-1]
        self.calls.append(
            {
                "action": action,
                "path": request.url.path,
                "headers": dict(request.headers),
                "body": request.content.decode("utf-8"),
            }
        )
        if action in self.fail_actions:
            return httpx.Response(500, text=UPNP_FAULT)
        if action == "GetTransportInfo":
            return httpx.Response(200, text=TRANSPORT_INFO)
        return httpx.Response(200, text="<ok/>")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(lambda request: self._handle(request))


@pytest.fixture
def speaker() -> FakeSpeaker:
    return FakeSpeaker()


@pytest.fixture
def sonos(speaker: FakeSpeaker) -> SonosService:
    address = SpeakerAddress("192.168.1.50")
    return SonosService(transport=SoapTransport(address, transport=speaker.transport))


@pytest.fixture
def make_store(tmp_path):
    def _make(name: str = "Spotify", token: Optional[OAuthToken] = None, required_scope: Optional[str] = None):
        store = TokenStore(tmp_path / f"{name.lower()}_tokens.json", name=name, required_scope=required_scope)
        if token is not None:
            store.replace(token)
        return store

    return _make
