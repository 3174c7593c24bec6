"""Tests for zone player discovery."""
import pytest

from core.errors import NotFoundError
from sonos.discovery import (
    ZonePlayerManager, build_msearch, parse_device_description, parse_ssdp_headers
)

LOCATION = "http://192.168.1.20:1400/xml/device_description.xml"

DEVICE_DESCRIPTION = """<?xml version="1.0" encoding="utf-8"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:schemas-upnp-org:device:ZonePlayer:1</deviceType>
    <friendlyName>192.168.1.20 - Sonos One</friendlyName>
    <roomName>Kitchen</roomName>
    <UDN>uuid:RINCON_000E58A0123401400</UDN>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:AlarmClock:1</serviceType>
        <controlURL>/AlarmClock/Control</controlURL>
        <eventSubURL>/AlarmClock/Event</eventSubURL>
      </service>
    </serviceList>
    <deviceList>
      <device>
        <deviceType>urn:schemas-upnp-org:device:MediaRenderer:1</deviceType>
        <serviceList>
          <service>
            <serviceType>urn:schemas-upnp-org:service:RenderingControl:1</serviceType>
            <controlURL>/MediaRenderer/RenderingControl/Control</controlURL>
            <eventSubURL>/MediaRenderer/RenderingControl/Event</eventSubURL>
          </service>
          <service>
            <serviceType>urn:schemas-upnp-org:service:AVTransport:1</serviceType>
            <controlURL>/MediaRenderer/AVTransport/Control</controlURL>
            <eventSubURL>/MediaRenderer/AVTransport/Event</eventSubURL>
          </service>
        </serviceList>
      </device>
    </deviceList>
  </device>
</root>"""


def test_parse_device_description(zone_player):
    player = parse_device_description(DEVICE_DESCRIPTION, LOCATION)
    assert player == zone_player
    assert player.queue_uri == "x-rincon-queue:RINCON_000E58A0123401400#0"


def test_parse_device_description_rejects_other_devices():
    with pytest.raises(ValueError):
        parse_device_description("<root xmlns='urn:schemas-upnp-org:device-1-0'><device/></root>", LOCATION)
    with pytest.raises(ValueError):
        parse_device_description("<root", LOCATION)


def test_msearch_and_response_headers():
    request = build_msearch("urn:schemas-upnp-org:device:ZonePlayer:1").decode()
    assert request.startswith("M-SEARCH * HTTP/1.1\r\n")
    assert "ST: urn:schemas-upnp-org:device:ZonePlayer:1\r\n" in request
    assert request.endswith("\r\n\r\n")

    headers = parse_ssdp_headers(
        b"HTTP/1.1 200 OK\r\nCACHE-CONTROL: max-age = 1800\r\nLOCATION: " + LOCATION.encode() +
        b"\r\nST: urn:schemas-upnp-org:device:ZonePlayer:1\r\n\r\n")
    assert headers["location"] == LOCATION
    assert headers["st"] == "urn:schemas-upnp-org:device:ZonePlayer:1"


def test_manager_rooms_and_lookup(zone_player):
    found = []
    manager = ZonePlayerManager(on_found=found.append)

    assert manager.add_player(zone_player)
    assert not manager.add_player(zone_player)
    bedroom = parse_device_description(
        DEVICE_DESCRIPTION.replace("Kitchen", "Bedroom").replace("0123401400", "0999901400"), LOCATION)
    manager.add_player(bedroom)

    assert found == [zone_player, bedroom]
    assert manager.rooms() == ["Bedroom", "Kitchen"]
    assert manager.get_by_room("Kitchen") is zone_player
    with pytest.raises(NotFoundError):
        manager.get_by_room("Garage")


def test_manager_survives_callback_error(zone_player):
    def broken(player):
        raise RuntimeError("boom")

    manager = ZonePlayerManager(on_found=broken)
    assert manager.add_player(zone_player)
    assert manager.players() == [zone_player]
