"""Tests for the inbound NOTIFY gateway."""
import pytest
from aiohttp.test_utils import TestClient, TestServer

from sonos.gateway import EventGateway
from sonos.subscriptions import SubscriptionRegistry
from tests.conftest import settle
from tests.test_events import propertyset

ENDPOINT = "http://192.168.1.20:1400/MediaRenderer/AVTransport/Event"


@pytest.mark.asyncio
async def test_notify_routes_payload_to_listener(gena_client):
    registry = SubscriptionRegistry(gena_client)
    received = []
    registry.subscribe(ENDPOINT, received.append)
    await settle()
    sid = registry.sid(ENDPOINT)

    async with TestClient(TestServer(EventGateway(registry).create_app())) as client:
        resp = await client.request("NOTIFY", "/", data=propertyset("<Event>1</Event>"),
                                    headers={"SID": sid, "NT": "upnp:event", "NTS": "upnp:propchange"})
        assert resp.status == 200
        resp = await client.request("NOTIFY", "/any/path", data=propertyset("<Event>2</Event>"),
                                    headers={"SID": sid})
        assert resp.status == 200

    assert received == ["<Event>1</Event>", "<Event>2</Event>"]
    await registry.close()


@pytest.mark.asyncio
async def test_notify_always_acknowledged(gena_client):
    registry = SubscriptionRegistry(gena_client)
    received = []
    registry.subscribe(ENDPOINT, received.append)
    await settle()

    async with TestClient(TestServer(EventGateway(registry).create_app())) as client:
        unknown = await client.request("NOTIFY", "/", data=propertyset("x"), headers={"SID": "uuid:unknown"})
        malformed = await client.request("NOTIFY", "/", data="<broken", headers={"SID": registry.sid(ENDPOINT)})
        empty = await client.request("NOTIFY", "/", data='<e:propertyset xmlns:e="urn:schemas-upnp-org:event-1-0"/>',
                                     headers={"SID": registry.sid(ENDPOINT)})

    assert [unknown.status, malformed.status, empty.status] == [200, 200, 200]
    assert received == []
    await registry.close()


@pytest.mark.asyncio
async def test_oversized_notify_acknowledged(gena_client):
    registry = SubscriptionRegistry(gena_client)
    received = []
    registry.subscribe(ENDPOINT, received.append)
    await settle()

    huge = propertyset("x" * 4096)
    gateway = EventGateway(registry, client_max_size=1024)
    async with TestClient(TestServer(gateway.create_app())) as client:
        resp = await client.request("NOTIFY", "/", data=huge, headers={"SID": registry.sid(ENDPOINT)})
        assert resp.status == 200
        resp = await client.request("NOTIFY", "/", data=propertyset("small"), headers={"SID": registry.sid(ENDPOINT)})
        assert resp.status == 200

    assert received == ["small"]
    await registry.close()
