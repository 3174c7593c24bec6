"""
Zone player control - SOAP actions on AVTransport and RenderingControl

Usage:
    async with ZonePlayerControl(player, "http://192.168.1.10:3000") as control:
        await control.play_songs(index, [3, 4, 5])
"""
import asyncio
import posixpath
import re
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote
from xml.sax.saxutils import escape as xml_escape

import aiohttp

from core.errors import ControlError, BadRequestError
from core.utils import log_debug, log_info, format_hms
from config import MAX_QUEUE_SONGS
from library.models import MusicIndex, Song
from sonos.discovery import ZonePlayer

AV_TRANSPORT = "AVTransport"
RENDERING_CONTROL = "RenderingControl"

SOAP_TIMEOUT = 10


# ============== SOAP ==============

def build_envelope(service: str, action: str, args: Sequence[Tuple[str, str]]) -> str:
    """Generate SOAP request envelope"""
    params = "".join(f"<{name}>{xml_escape(str(value))}</{name}>" for name, value in args)
    return f"""<?xml version="1.0" encoding="utf-8"?>
<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" s:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
  <s:Body><u:{action} xmlns:u="urn:schemas-upnp-org:service:{service}:1">{params}</u:{action}></s:Body>
</s:Envelope>"""


def parse_response(body: str, action: str) -> Dict[str, str]:
    """Return the output arguments of a SOAP response"""
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return {}
    for element in root.iter():
        if element.tag.rsplit("}", 1)[-1] == f"{action}Response":
            return {child.tag.rsplit("}", 1)[-1]: child.text or "" for child in element}
    return {}


def parse_upnp_error(body: str) -> Optional[int]:
    """Extract the UPnP errorCode of a SOAP fault"""
    match = re.search(r"<(?:\w+:)?errorCode>\s*(\d+)\s*<", body)
    if match:
        return int(match.group(1))
    match = re.search(r'errorCode="(\d+)"', body)
    return int(match.group(1)) if match else None


async def soap_call(
    session: aiohttp.ClientSession,
    control_url: str,
    service: str,
    action: str,
    args: Sequence[Tuple[str, str]] = (),
) -> Dict[str, str]:
    """
    Invoke a SOAP action.

    Args:
        session: HTTP session
        control_url: Service control URL
        service: Service name (AVTransport, RenderingControl)
        action: Action name
        args: Ordered input arguments

    Returns:
        Output arguments by name

    Raises:
        ControlError: network error or non-200 answer
    """
    headers = {
        "Content-Type": 'text/xml; charset="utf-8"',
        "SOAPACTION": f'"urn:schemas-upnp-org:service:{service}:1#{action}"',
    }
    body = build_envelope(service, action, args)
    try:
        async with session.post(control_url, data=body.encode("utf-8"), headers=headers) as resp:
            text = await resp.text()
            status = resp.status
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise ControlError(f"{action} failed: {e}") from e

    if status != 200:
        error_code = parse_upnp_error(text)
        raise ControlError(f"{action} returned {status}", upnp_error_code=error_code)

    log_debug("Control", f"{service}#{action} ok")
    return parse_response(text, action)


# ============== DIDL-Lite ==============

def song_didl(song: Song, song_uri: str, album_art_uri: str = "") -> str:
    """DIDL-Lite metadata for one enqueued song"""
    ext = posixpath.splitext(song.path)[1].lstrip(".") or "mpeg"
    return (
        '<DIDL-Lite xmlns:dc="http://purl.org/dc/elements/1.1/" '
        'xmlns:upnp="urn:schemas-upnp-org:metadata-1-0/upnp/" '
        'xmlns:r="urn:schemas-rinconnetworks-com:metadata-1-0/" '
        'xmlns="urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/">'
        '<item id="-1" parentID="-1" restricted="true">'
        f'<res protocolInfo="http-get:*:audio/{ext}:*" duration="{format_hms(song.duration_secs)}">'
        f'{xml_escape(song_uri)}</res>'
        f'<dc:title>{xml_escape(song.title)}</dc:title>'
        '<upnp:class>object.item.audioItem.musicTrack</upnp:class>'
        f'<dc:creator>{xml_escape(song.artist)}</dc:creator>'
        f'<upnp:album>{xml_escape(song.album)}</upnp:album>'
        f'<upnp:originalTrackNumber>{song.track_num}</upnp:originalTrackNumber>'
        f'<r:albumArtist>{xml_escape(song.artist)}</r:albumArtist>'
        f'<upnp:albumArtURI>{xml_escape(album_art_uri)}</upnp:albumArtURI>'
        '</item></DIDL-Lite>'
    )


# ============== Zone Player Control ==============

class ZonePlayerControl:
    """Playback control of one zone player"""

    def __init__(self, player: ZonePlayer, server_url: str, session: Optional[aiohttp.ClientSession] = None):
        """
        Initialize control.

        Args:
            player: Target zone player
            server_url: Base URL the player fetches /content/ files from
            session: Shared HTTP session (a private one is created otherwise)
        """
        self._player = player
        self._server_url = server_url.rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "ZonePlayerControl":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=SOAP_TIMEOUT))
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    async def _transport(self, action: str, *args: Tuple[str, str]) -> Dict[str, str]:
        return await soap_call(self._session, self._player.av_transport.control_url,
                               AV_TRANSPORT, action, (("InstanceID", "0"),) + args)

    async def _rendering(self, action: str, *args: Tuple[str, str]) -> Dict[str, str]:
        return await soap_call(self._session, self._player.rendering_control.control_url,
                               RENDERING_CONTROL, action, (("InstanceID", "0"),) + args)

    # ============== Transport ==============

    async def play(self):
        await self._transport("Play", ("Speed", "1"))

    async def pause(self):
        await self._transport("Pause")

    async def next(self):
        await self._transport("Next")

    async def previous(self):
        await self._transport("Previous")

    async def seek(self, seconds: int):
        """Seek within the current track"""
        await self._transport("Seek", ("Unit", "REL_TIME"), ("Target", format_hms(seconds)))

    async def get_position_info(self) -> Dict[str, str]:
        """Returns Track, TrackDuration, TrackURI, RelTime, ..."""
        return await self._transport("GetPositionInfo")

    # ============== Rendering ==============

    async def set_volume(self, volume: int):
        if volume < 0 or volume > 100:
            raise BadRequestError(f"volume out of range: {volume}")
        await self._rendering("SetVolume", ("Channel", "Master"), ("DesiredVolume", str(volume)))

    async def get_volume(self) -> int:
        result = await self._rendering("GetVolume", ("Channel", "Master"))
        try:
            return int(result.get("CurrentVolume", "0"))
        except ValueError:
            return 0

    # ============== Queue ==============

    def song_uri(self, song: Song) -> str:
        return f"{self._server_url}/content/{quote(song.path)}"

    def art_uri(self, index: MusicIndex, song_id: int) -> str:
        album = index.album_for_song(song_id)
        if album is None or not album.art_path:
            return ""
        return f"{self._server_url}/content/{quote(album.art_path)}"

    async def play_songs(self, index: MusicIndex, song_ids: List[int]):
        """
        Replace the player's queue with the given songs and start playback.

        At most MAX_QUEUE_SONGS songs are enqueued.

        Raises:
            NotFoundError: unknown song id
            ControlError: a SOAP action failed
        """
        song_ids = song_ids[:MAX_QUEUE_SONGS]
        songs = [(song_id, index.get_song(song_id)) for song_id in song_ids]

        await self._transport("RemoveAllTracksFromQueue")
        for song_id, song in songs:
            uri = self.song_uri(song)
            await self._transport(
                "AddURIToQueue",
                ("EnqueuedURI", uri),
                ("EnqueuedURIMetaData", song_didl(song, uri, self.art_uri(index, song_id))),
                ("DesiredFirstTrackNumberEnqueued", "0"),
                ("EnqueueAsNext", "0"),
            )
        await self._transport("SetAVTransportURI",
                              ("CurrentURI", self._player.queue_uri), ("CurrentURIMetaData", ""))
        await self.play()
        log_info("Control", f"Playing {len(songs)} song(s) on {self._player.room_name}")
