"""
Event payload decoding - NOTIFY property sets and LastChange documents

A NOTIFY body is a property set:

    <e:propertyset xmlns:e="urn:schemas-upnp-org:event-1-0">
      <e:property><LastChange>&lt;Event ...&gt;</LastChange></e:property>
    </e:propertyset>

Only the first property is used. Its text is a LastChange document whose
InstanceID element carries one child per changed state variable, with the
value in the `val` attribute. CurrentTrackMetaData holds DIDL-Lite.
"""
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Dict, Optional, Union


def _local(tag: str) -> str:
    """Strip the "{namespace}" prefix ElementTree puts on tags"""
    return tag.rsplit("}", 1)[-1]


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    for child in element:
        if _local(child.tag) == name:
            return child
    return None


def _text(element: ET.Element, name: str) -> str:
    child = _child(element, name)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _val(element: ET.Element, name: str) -> str:
    child = _child(element, name)
    if child is None:
        return ""
    return child.get("val", "")


def _int(value: str, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _instance(last_change: str) -> Optional[ET.Element]:
    if not last_change:
        return None
    try:
        root = ET.fromstring(last_change)
    except ET.ParseError:
        return None
    return _child(root, "InstanceID")


# ============== Notification Envelope ==============

def parse_notification(body: Union[str, bytes]) -> Optional[str]:
    """
    Extract the event payload from a NOTIFY body.

    Args:
        body: Raw request body

    Returns:
        Text of the first property (normally LastChange), or None when the
        property set holds no property

    Raises:
        ET.ParseError: body is not well-formed XML
    """
    root = ET.fromstring(body)
    for prop in root:
        if _local(prop.tag) != "property":
            continue
        for variable in prop:
            return variable.text or ""
        return prop.text or ""
    return None


# ============== DIDL-Lite ==============

@dataclass(frozen=True)
class TrackMetadata:
    title: str = ""
    creator: str = ""
    album: str = ""
    album_artist: str = ""
    album_art_uri: str = ""
    original_track_number: int = 0


def parse_didl(didl: str) -> Optional[TrackMetadata]:
    """Parse the first item of a DIDL-Lite document"""
    if not didl:
        return None
    try:
        root = ET.fromstring(didl)
    except ET.ParseError:
        return None
    item = _child(root, "item")
    if item is None:
        return None
    return TrackMetadata(
        title=_text(item, "title"),
        creator=_text(item, "creator"),
        album=_text(item, "album"),
        album_artist=_text(item, "albumArtist"),
        album_art_uri=_text(item, "albumArtURI"),
        original_track_number=_int(_text(item, "originalTrackNumber")),
    )


# ============== AVTransport ==============

@dataclass(frozen=True)
class TransportEvent:
    transport_state: str = ""
    current_play_mode: str = ""
    number_of_tracks: int = 0
    current_track: int = 0
    current_track_uri: str = ""
    current_track_duration: str = ""
    track: Optional[TrackMetadata] = None

    @property
    def playing(self) -> bool:
        return self.transport_state == "PLAYING"


def decode_transport_event(last_change: str) -> TransportEvent:
    """Decode an AVTransport LastChange document; unknown input gives an empty event"""
    instance = _instance(last_change)
    if instance is None:
        return TransportEvent()
    return TransportEvent(
        transport_state=_val(instance, "TransportState"),
        current_play_mode=_val(instance, "CurrentPlayMode"),
        number_of_tracks=_int(_val(instance, "NumberOfTracks")),
        current_track=_int(_val(instance, "CurrentTrack")),
        current_track_uri=_val(instance, "CurrentTrackURI"),
        current_track_duration=_val(instance, "CurrentTrackDuration"),
        track=parse_didl(_val(instance, "CurrentTrackMetaData")),
    )


# ============== RenderingControl ==============

@dataclass(frozen=True)
class RenderingControlEvent:
    volume: Dict[str, int] = field(default_factory=dict)
    mute: Dict[str, bool] = field(default_factory=dict)
    bass: Optional[int] = None
    treble: Optional[int] = None
    loudness: Optional[bool] = None

    @property
    def master_volume(self) -> Optional[int]:
        """Master channel volume, else the first channel reported"""
        if "Master" in self.volume:
            return self.volume["Master"]
        for value in self.volume.values():
            return value
        return None


def decode_rendering_event(last_change: str) -> RenderingControlEvent:
    """Decode a RenderingControl LastChange document"""
    instance = _instance(last_change)
    if instance is None:
        return RenderingControlEvent()

    volume: Dict[str, int] = {}
    mute: Dict[str, bool] = {}
    bass = treble = None
    loudness = None
    for child in instance:
        name = _local(child.tag)
        value = child.get("val", "")
        if name == "Volume":
            volume[child.get("channel", "Master")] = _int(value)
        elif name == "Mute":
            mute[child.get("channel", "Master")] = value == "1"
        elif name == "Bass":
            bass = _int(value)
        elif name == "Treble":
            treble = _int(value)
        elif name == "Loudness":
            loudness = value == "1"
    return RenderingControlEvent(volume=volume, mute=mute, bass=bass, treble=treble, loudness=loudness)
