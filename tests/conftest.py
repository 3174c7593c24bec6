"""Shared pytest fixtures and fakes."""
import asyncio
import os
from typing import List, Optional, Tuple

import pytest

from core.errors import SubscriptionError
from library.models import Album, Artist, MusicIndex, Song
from sonos.discovery import ServiceEndpoints, ZonePlayer


async def settle(rounds: int = 10):
    """Let pending tasks run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for_condition(predicate, timeout: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


class FakeGenaClient:
    """Records SUBSCRIBE/UNSUBSCRIBE calls; every grant gets a fresh SID"""

    def __init__(self, lease: int = 20):
        self.lease = lease
        self.subscribe_calls: List[Tuple[str, Optional[str]]] = []
        self.unsubscribe_calls: List[Tuple[str, str]] = []
        self.fail_subscribe = False
        self.fail_renewals = False
        self.gate: Optional[asyncio.Event] = None
        self._issued = 0

    async def subscribe(self, endpoint: str, sid: Optional[str] = None):
        self.subscribe_calls.append((endpoint, sid))
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if sid is None and self.fail_subscribe:
            raise SubscriptionError(f"SUBSCRIBE {endpoint} returned 500")
        if sid is not None and self.fail_renewals:
            raise SubscriptionError(f"SUBSCRIBE {endpoint} returned 412")
        self._issued += 1
        return f"uuid:sid-{self._issued}", self.lease

    async def unsubscribe(self, endpoint: str, sid: str):
        self.unsubscribe_calls.append((endpoint, sid))
        return True


@pytest.fixture
def gena_client() -> FakeGenaClient:
    return FakeGenaClient()


@pytest.fixture
def music_root(tmp_path):
    """Library folder with three untagged songs"""
    root = tmp_path / "music"
    for rel in ("Artist A/AlbumX/01 Song1.mp3", "Artist A/AlbumX/02 Song2.mp3", "Artist B/AlbumY/Song3.mp3"):
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"\x00")
    return root


def touch(root, rel: str, data: bytes = b"\x00") -> str:
    path = os.path.join(str(root), *rel.split("/"))
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)
    return path


@pytest.fixture
def sample_index() -> MusicIndex:
    songs = [
        Song("Abba/Gold/01 Dancing Queen.mp3", "Dancing Queen", "Abba", "Gold", 1, 2, 1992, 231, True),
        Song("Abba/Gold/02 Waterloo.mp3", "Waterloo", "Abba", "Gold", 2, 2, 1992, 168, True),
        Song("Queen/Jazz/01 Mustapha.mp3", "Mustapha", "Queen", "Jazz", 1, 1, 1978, 183, True),
    ]
    albums = [
        Album("Gold", "Abba", 0, 2, "Abba/Gold/Folder.jpg", True),
        Album("Jazz", "Queen", 2, 3),
    ]
    artists = [Artist("Abba", 0, 1), Artist("Queen", 1, 2)]
    return MusicIndex.from_parts(songs, albums, artists)


@pytest.fixture
def zone_player() -> ZonePlayer:
    return ZonePlayer(
        udn="uuid:RINCON_000E58A0123401400",
        room_name="Kitchen",
        location="http://192.168.1.20:1400/xml/device_description.xml",
        av_transport=ServiceEndpoints(
            control_url="http://192.168.1.20:1400/MediaRenderer/AVTransport/Control",
            event_url="http://192.168.1.20:1400/MediaRenderer/AVTransport/Event",
        ),
        rendering_control=ServiceEndpoints(
            control_url="http://192.168.1.20:1400/MediaRenderer/RenderingControl/Control",
            event_url="http://192.168.1.20:1400/MediaRenderer/RenderingControl/Event",
        ),
    )
