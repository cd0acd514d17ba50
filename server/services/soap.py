from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from xml.etree import ElementTree

import httpx


log = logging.getLogger("sonosrelay")

SOAP_ENVELOPE_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP_ENCODING_NS = "http://schemas.xmlsoap.org/soap/encoding/"

AV_TRANSPORT_SERVICE = "urn:schemas-upnp-org:service:AVTransport:1"
RENDERING_CONTROL_SERVICE = "urn:schemas-upnp-org:service:RenderingControl:1"
AV_TRANSPORT_PATH = "/MediaRenderer/AVTransport/Control"
RENDERING_CONTROL_PATH = "/MediaRenderer/RenderingControl/Control"

SPEAKER_PORT = 1400


class TransportError(Exception):
    """A SOAP call did not reach the speaker or was answered with a non-2xx status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class SpeakerAddress:
    host: str
    port: int = SPEAKER_PORT

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def build_envelope(action: str, service_type: str, body: str) -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<s:Envelope xmlns:s="{SOAP_ENVELOPE_NS}" s:encodingStyle="{SOAP_ENCODING_NS}">'
        "<s:Body>"
        f'<u:{action} xmlns:u="{service_type}">'
        f"{body}"
        f"</u:{action}>"
        "</s:Body>"
        "</s:Envelope>"
    )


def parse_upnp_fault(xml_text: str) -> Optional[str]:
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError:
        return None
    fault = root.find(".//{*}Fault")
    if fault is None:
        return None
    error_code = root.findtext(".//{*}errorCode")
    error_desc = root.findtext(".//{*}errorDescription")
    if error_code or error_desc:
        code = (error_code or "").strip()
        desc = (error_desc or "").strip()
        if code and desc:
            return f"UPnPError {code}: {desc}"
        return f"UPnPError {code or desc}".strip()
    fault_string = root.findtext(".//{*}faultstring")
    if fault_string:
        return fault_string.strip()
    return "UPnPError (unknown SOAP fault)"


class SoapTransport:
    def __init__(
        self,
        address: SpeakerAddress,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.address = address
        self._timeout = float(timeout)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def send_action(self, endpoint_path: str, action: str, service_type: str, body: str = "") -> str:
        """POST one UPnP control action and return the raw response body.

        Any 2xx status counts as success. Everything else, including
        connection failures and timeouts, raises ``TransportError``.
        """

        target = f"{self.address.base_url}{endpoint_path}"
        envelope = build_envelope(action, service_type, body)
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f'"{service_type}#{action}"',
        }
        try:
            async with self._client() as client:
                resp = await client.post(target, content=envelope.encode("utf-8"), headers=headers)
        except httpx.TimeoutException as exc:
            raise TransportError(f"SOAP request error: {action} timed out ({exc})") from exc
        except httpx.RequestError as exc:
            raise TransportError(f"SOAP request error: {exc}") from exc

        text = resp.text or ""
        if 200 <= resp.status_code < 300:
            return text
        detail = parse_upnp_fault(text) or text.strip()
        log.warning("Sonos SOAP %s failed (speaker=%s, status=%s): %s", action, self.address, resp.status_code, detail)
        raise TransportError(
            f"SOAP request failed: {resp.status_code} - {detail}",
            status_code=resp.status_code,
            body=text,
        )

    async def fetch(self, path: str) -> str:
        """GET a plain document (e.g. the device description) from the speaker."""

        url = f"{self.address.base_url}{path}"
        try:
            async with self._client() as client:
                resp = await client.get(url)
        except httpx.RequestError as exc:
            raise TransportError(f"Speaker request error: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            raise TransportError(
                f"Speaker request failed: {resp.status_code}",
                status_code=resp.status_code,
                body=resp.text,
            )
        return resp.text
