"""Tests for NOTIFY body and LastChange decoding."""
import xml.etree.ElementTree as ET
from xml.sax.saxutils import escape

import pytest

from sonos.events import (
    parse_notification, parse_didl, decode_transport_event, decode_rendering_event
)

DIDL = (
    '<DIDL-Lite xmlns:dc="http://purl.org/dc/elements/1.1/" '
    'xmlns:upnp="urn:schemas-upnp-org:metadata-1-0/upnp/" '
    'xmlns:r="urn:schemas-rinconnetworks-com:metadata-1-0/" '
    'xmlns="urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/">'
    '<item id="-1" parentID="-1" restricted="true">'
    '<dc:title>Waterloo</dc:title><dc:creator>Abba</dc:creator>'
    '<upnp:album>Gold</upnp:album><upnp:originalTrackNumber>2</upnp:originalTrackNumber>'
    '<r:albumArtist>Abba</r:albumArtist>'
    '<upnp:albumArtURI>/getaa?s=1&amp;u=x</upnp:albumArtURI>'
    '</item></DIDL-Lite>'
)

TRANSPORT_LAST_CHANGE = (
    '<Event xmlns="urn:schemas-upnp-org:metadata-1-0/AVT/">'
    '<InstanceID val="0">'
    '<TransportState val="PLAYING"/>'
    '<CurrentPlayMode val="NORMAL"/>'
    '<NumberOfTracks val="12"/>'
    '<CurrentTrack val="3"/>'
    '<CurrentTrackURI val="http://10.0.0.2:3000/content/Abba/Gold/02%20Waterloo.mp3"/>'
    '<CurrentTrackDuration val="0:02:48"/>'
    f'<CurrentTrackMetaData val="{escape(DIDL, {chr(34): "&quot;"})}"/>'
    '</InstanceID></Event>'
)

RENDERING_LAST_CHANGE = (
    '<Event xmlns="urn:schemas-upnp-org:metadata-1-0/RCS/">'
    '<InstanceID val="0">'
    '<Volume channel="Master" val="25"/><Volume channel="LF" val="100"/>'
    '<Mute channel="Master" val="0"/>'
    '<Bass val="2"/><Treble val="-1"/><Loudness channel="Master" val="1"/>'
    '</InstanceID></Event>'
)


def propertyset(*values: str) -> str:
    props = "".join(f"<e:property><LastChange>{escape(v)}</LastChange></e:property>" for v in values)
    return f'<e:propertyset xmlns:e="urn:schemas-upnp-org:event-1-0">{props}</e:propertyset>'


def test_parse_notification_takes_first_property():
    body = propertyset(TRANSPORT_LAST_CHANGE, "<ignored/>")
    assert parse_notification(body) == TRANSPORT_LAST_CHANGE


def test_parse_notification_accepts_bytes():
    assert parse_notification(propertyset("abc").encode()) == "abc"


def test_parse_notification_without_property():
    assert parse_notification('<e:propertyset xmlns:e="urn:schemas-upnp-org:event-1-0"/>') is None


def test_parse_notification_rejects_malformed_xml():
    with pytest.raises(ET.ParseError):
        parse_notification("<e:propertyset")


def test_decode_transport_event():
    event = decode_transport_event(TRANSPORT_LAST_CHANGE)
    assert event.playing
    assert event.current_play_mode == "NORMAL"
    assert event.number_of_tracks == 12
    assert event.current_track == 3
    assert event.current_track_duration == "0:02:48"
    assert event.track.title == "Waterloo"
    assert event.track.creator == "Abba"
    assert event.track.album == "Gold"
    assert event.track.album_artist == "Abba"
    assert event.track.original_track_number == 2
    assert event.track.album_art_uri == "/getaa?s=1&u=x"


def test_decode_transport_event_without_metadata():
    event = decode_transport_event(
        '<Event><InstanceID val="0"><TransportState val="PAUSED_PLAYBACK"/></InstanceID></Event>')
    assert not event.playing
    assert event.track is None


def test_decode_garbage_gives_empty_events():
    assert decode_transport_event("not xml").transport_state == ""
    assert decode_rendering_event("").master_volume is None
    assert parse_didl("<DIDL-Lite/>") is None


def test_decode_rendering_event():
    event = decode_rendering_event(RENDERING_LAST_CHANGE)
    assert event.volume == {"Master": 25, "LF": 100}
    assert event.master_volume == 25
    assert event.mute == {"Master": False}
    assert event.bass == 2
    assert event.treble == -1
    assert event.loudness is True
