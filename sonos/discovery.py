"""
Zone player discovery - SSDP search and device description parsing

An M-SEARCH for the ZonePlayer device type is multicast once; every answer
carries a LOCATION header pointing at the player's device description, which
lists the control and event URLs of its AVTransport and RenderingControl
services (inside the embedded MediaRenderer device).
"""
import asyncio
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from urllib.parse import urljoin

import aiohttp

from core.errors import NotFoundError
from core.utils import log_info, log_debug, log_warning, log_error
from config import (
    SSDP_MULTICAST_ADDR, SSDP_PORT, ZONE_PLAYER_SEARCH_TARGET,
    DISCOVERY_TIMEOUT, DISCOVERY_RETRY_INTERVAL
)

AV_TRANSPORT_SERVICE = "urn:schemas-upnp-org:service:AVTransport:1"
RENDERING_CONTROL_SERVICE = "urn:schemas-upnp-org:service:RenderingControl:1"


@dataclass(frozen=True)
class ServiceEndpoints:
    control_url: str
    event_url: str


@dataclass(frozen=True)
class ZonePlayer:
    udn: str
    room_name: str
    location: str
    av_transport: ServiceEndpoints
    rendering_control: ServiceEndpoints

    @property
    def queue_uri(self) -> str:
        """Transport URI that plays the player's own queue"""
        udn = self.udn[len("uuid:"):] if self.udn.startswith("uuid:") else self.udn
        return f"x-rincon-queue:{udn}#0"


# ============== Device Description ==============

def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _find_text(element: ET.Element, name: str) -> str:
    for child in element:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return ""


def _iter_devices(device: ET.Element):
    yield device
    for child in device:
        if _local(child.tag) == "deviceList":
            for sub in child:
                if _local(sub.tag) == "device":
                    yield from _iter_devices(sub)


def _find_service(devices: List[ET.Element], service_type: str, base_url: str) -> Optional[ServiceEndpoints]:
    for device in devices:
        for child in device:
            if _local(child.tag) != "serviceList":
                continue
            for service in child:
                if _find_text(service, "serviceType") == service_type:
                    return ServiceEndpoints(
                        control_url=urljoin(base_url, _find_text(service, "controlURL")),
                        event_url=urljoin(base_url, _find_text(service, "eventSubURL")),
                    )
    return None


def parse_device_description(xml_text: str, location: str) -> ZonePlayer:
    """
    Parse a zone player device description.

    Args:
        xml_text: Device description document
        location: URL it was fetched from (base for relative URLs)

    Raises:
        ValueError: not a zone player description
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise ValueError(f"invalid device description: {e}") from e

    base_url = _find_text(root, "URLBase") or location
    device = next((child for child in root if _local(child.tag) == "device"), None)
    if device is None:
        raise ValueError("device description has no device element")

    devices = list(_iter_devices(device))
    av_transport = _find_service(devices, AV_TRANSPORT_SERVICE, base_url)
    rendering_control = _find_service(devices, RENDERING_CONTROL_SERVICE, base_url)
    if av_transport is None or rendering_control is None:
        raise ValueError("device has no AVTransport/RenderingControl service")

    return ZonePlayer(
        udn=_find_text(device, "UDN"),
        room_name=_find_text(device, "roomName") or _find_text(device, "friendlyName"),
        location=location,
        av_transport=av_transport,
        rendering_control=rendering_control,
    )


# ============== SSDP ==============

def build_msearch(search_target: str, mx: int = 1) -> bytes:
    """Build an SSDP M-SEARCH request"""
    return (
        "M-SEARCH * HTTP/1.1\r\n"
        f"HOST: {SSDP_MULTICAST_ADDR}:{SSDP_PORT}\r\n"
        'MAN: "ssdp:discover"\r\n'
        f"MX: {mx}\r\n"
        f"ST: {search_target}\r\n"
        "\r\n"
    ).encode()


def parse_ssdp_headers(data: bytes) -> Dict[str, str]:
    """Parse the headers of an SSDP response (keys lower-cased)"""
    headers = {}
    lines = data.decode("utf-8", errors="ignore").split("\r\n")
    for line in lines[1:]:
        if ":" in line:
            key, value = line.split(":", 1)
            headers[key.strip().lower()] = value.strip()
    return headers


class SsdpSearchProtocol(asyncio.DatagramProtocol):
    """Collects LOCATION headers of M-SEARCH answers"""

    def __init__(self, on_location: Callable[[str], None], search_target: str):
        self._on_location = on_location
        self._search_target = search_target

    def datagram_received(self, data: bytes, addr):
        headers = parse_ssdp_headers(data)
        if headers.get("st", self._search_target) != self._search_target:
            return
        location = headers.get("location")
        if location:
            log_debug("Discovery", f"Answer from {addr[0]}: {location}")
            self._on_location(location)

    def error_received(self, exc):
        log_debug("Discovery", f"SSDP socket error: {exc}")


# ============== Zone Player Manager ==============

class ZonePlayerManager:
    """
    Keeps the zone players found on the network.

    Discovery runs in the background; an attempt that fails (or finds
    nothing) is retried every DISCOVERY_RETRY_INTERVAL seconds.
    """

    def __init__(
        self,
        on_found: Optional[Callable[[ZonePlayer], None]] = None,
        search_target: str = ZONE_PLAYER_SEARCH_TARGET,
        timeout: float = DISCOVERY_TIMEOUT,
        retry_interval: float = DISCOVERY_RETRY_INTERVAL,
    ):
        """
        Initialize manager.

        Args:
            on_found: Callback for each newly found player
            search_target: SSDP search target
            timeout: Seconds one search collects answers
            retry_interval: Seconds between failed attempts
        """
        self._on_found = on_found
        self._search_target = search_target
        self._timeout = timeout
        self._retry_interval = retry_interval
        self._players: Dict[str, ZonePlayer] = {}
        self._task: Optional[asyncio.Task] = None

    # ============== Lookup ==============

    def add_player(self, player: ZonePlayer) -> bool:
        """
        Register a player.

        Returns:
            True when the player was not known yet
        """
        is_new = player.udn not in self._players
        self._players[player.udn] = player
        if is_new:
            log_info("Discovery", f"Found zone player: {player.room_name}")
            if self._on_found:
                try:
                    self._on_found(player)
                except Exception as e:
                    log_warning("Discovery", f"on_found callback error: {e}")
        return is_new

    def players(self) -> List[ZonePlayer]:
        return list(self._players.values())

    def rooms(self) -> List[str]:
        """Sorted room names of all known players"""
        return sorted({player.room_name for player in self._players.values()})

    def get_by_room(self, room: str) -> ZonePlayer:
        """
        Look up a player by room name.

        Raises:
            NotFoundError: no player in that room
        """
        for player in self._players.values():
            if player.room_name == room:
                return player
        raise NotFoundError(f"Unknown room: {room}")

    # ============== Discovery ==============

    async def discover_once(self) -> int:
        """
        Run one SSDP search and fetch the description of every answer.

        Returns:
            Number of players answering

        Raises:
            OSError: the search could not be sent
        """
        loop = asyncio.get_running_loop()
        locations: asyncio.Queue = asyncio.Queue()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: SsdpSearchProtocol(locations.put_nowait, self._search_target),
            local_addr=("0.0.0.0", 0),
        )

        seen = set()
        found = 0
        try:
            transport.sendto(build_msearch(self._search_target), (SSDP_MULTICAST_ADDR, SSDP_PORT))
            deadline = loop.time() + self._timeout
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                while True:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        break
                    try:
                        location = await asyncio.wait_for(locations.get(), remaining)
                    except asyncio.TimeoutError:
                        break
                    if location in seen:
                        continue
                    seen.add(location)
                    player = await self._fetch_player(session, location)
                    if player:
                        found += 1
                        self.add_player(player)
        finally:
            transport.close()
        return found

    async def _fetch_player(self, session: aiohttp.ClientSession, location: str) -> Optional[ZonePlayer]:
        try:
            async with session.get(location) as resp:
                if resp.status != 200:
                    log_warning("Discovery", f"Device description {location} returned {resp.status}")
                    return None
                text = await resp.text()
            return parse_device_description(text, location)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            log_warning("Discovery", f"Skipping {location}: {e}")
            return None

    async def _discover_loop(self):
        while True:
            try:
                if await self.discover_once() > 0:
                    return
                log_info("Discovery", f"No zone players found, trying again in {self._retry_interval} seconds")
            except asyncio.CancelledError:
                raise
            except OSError as e:
                log_warning("Discovery", f"Search failed, trying again in {self._retry_interval} seconds: {e}")
            except Exception as e:
                log_error("Discovery", f"Unexpected discovery error: {e}")
            await asyncio.sleep(self._retry_interval)

    def start(self):
        """Start background discovery"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._discover_loop())

    async def stop(self):
        """Stop background discovery"""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
