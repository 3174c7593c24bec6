"""
Album art resolver - embedded pictures and Cover Art Archive lookups

Runs after a new index has been published. Albums without a Folder.jpg get
one written next to their first song, either from a picture embedded in
that song or from the Cover Art Archive (release found via MusicBrainz).
Lookups are sequential and spaced ART_LOOKUP_INTERVAL apart.
"""
import asyncio
import io
import os
import time
from dataclasses import replace
from typing import List, Optional, Tuple

import aiohttp
import mutagen
from mutagen import MutagenError
from mutagen.mp4 import MP4Cover
from PIL import Image

from core.utils import log_info, log_debug, log_warning
from config import (
    APP_NAME, APP_VERSION, ALBUM_ART_FILE_NAME, ART_LOOKUP_INTERVAL, MUSICBRAINZ_CONTACT
)
from library.models import Album, MusicIndex

MUSICBRAINZ_URL = "https://musicbrainz.org/ws/2"
COVER_ART_URL = "https://coverartarchive.org"

# Outcome of one album lookup
ART_FOUND = "found"
ART_MISSING = "missing"      # definitive: no release or no front cover
ART_FAILED = "failed"        # transient: retried on the next scan


def read_embedded_picture(full_path: str) -> Optional[Tuple[str, bytes]]:
    """
    Read the first embedded cover picture of an audio file.

    Returns:
        (mime type, image bytes) or None
    """
    try:
        audio = mutagen.File(full_path)
    except (MutagenError, OSError) as e:
        log_debug("AlbumArt", f"Cannot read {full_path}: {e}")
        return None
    if audio is None:
        return None

    # FLAC / Ogg
    pictures = getattr(audio, "pictures", None)
    if pictures:
        return pictures[0].mime, pictures[0].data

    tags = audio.tags
    if tags is None:
        return None

    # ID3 (mp3, aac)
    if hasattr(tags, "getall"):
        frames = tags.getall("APIC")
        if frames:
            return frames[0].mime, frames[0].data

    # MP4 (m4a)
    covers = tags.get("covr") if hasattr(tags, "get") else None
    if covers:
        cover = covers[0]
        mime = "image/png" if getattr(cover, "imageformat", None) == MP4Cover.FORMAT_PNG else "image/jpeg"
        return mime, bytes(cover)
    return None


def write_cover(path: str, mime: str, data: bytes) -> bool:
    """
    Store cover bytes as a JPEG file.

    PNG (or other Pillow-readable) images are flattened onto a white
    background and re-encoded.

    Returns:
        True when the file was written
    """
    if mime in ("image/jpeg", "image/jpg"):
        with open(path, "wb") as f:
            f.write(data)
        return True

    try:
        with Image.open(io.BytesIO(data)) as img:
            img = img.convert("RGBA")
            background = Image.new("RGB", img.size, (255, 255, 255))
            background.paste(img, mask=img.split()[3])
            background.save(path, "JPEG", quality=80)
    except (OSError, ValueError) as e:
        log_warning("AlbumArt", f"Bad image ({mime}): {e}")
        return False
    return True


class AlbumArtResolver:
    """
    Resolves missing album art for a published index.

    Usage:
        resolver = AlbumArtResolver(music_folder)
        index = await resolver.resolve(index)
    """

    def __init__(
        self,
        root: str,
        musicbrainz_url: str = MUSICBRAINZ_URL,
        cover_art_url: str = COVER_ART_URL,
        interval: float = ART_LOOKUP_INTERVAL,
    ):
        """
        Initialize resolver.

        Args:
            root: Library root folder
            musicbrainz_url: MusicBrainz web service base URL
            cover_art_url: Cover Art Archive base URL
            interval: Minimum seconds between two network lookups
        """
        self._root = root
        self._musicbrainz_url = musicbrainz_url.rstrip("/")
        self._cover_art_url = cover_art_url.rstrip("/")
        self._interval = interval
        self._last_request = 0.0
        self._user_agent = f"{APP_NAME}/{APP_VERSION} ( {MUSICBRAINZ_CONTACT} )"

    async def resolve(self, index: MusicIndex) -> MusicIndex:
        """
        Resolve art for every album that has none and was never processed.

        Args:
            index: Published index

        Returns:
            A new index with updated albums, or the same index when no album
            is pending
        """
        pending = [i for i, album in enumerate(index.albums)
                   if not album.art_path and not album.art_processed]
        if not pending:
            return index

        log_info("AlbumArt", f"Resolving art for {len(pending)} album(s)")
        albums: List[Album] = list(index.albums)
        found = 0
        timeout = aiohttp.ClientTimeout(total=30)
        async with aiohttp.ClientSession(timeout=timeout, headers={"User-Agent": self._user_agent}) as session:
            for album_idx in pending:
                album = albums[album_idx]
                first_song = index.songs[album.start_song_idx]
                art_rel = _art_path_for(first_song.path)
                try:
                    outcome = await self._resolve_album(session, album, first_song.path, art_rel)
                except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
                    log_warning("AlbumArt", f"{album.artist} - {album.name}: {e}")
                    outcome = ART_FAILED

                if outcome == ART_FOUND:
                    albums[album_idx] = replace(album, art_path=art_rel, art_processed=True)
                    found += 1
                elif outcome == ART_MISSING:
                    albums[album_idx] = replace(album, art_processed=True)

        log_info("AlbumArt", f"Album art processing complete ({found} found)")
        return MusicIndex.from_parts(index.songs, albums, index.artists)

    async def _resolve_album(self, session: aiohttp.ClientSession, album: Album,
                             song_path: str, art_rel: str) -> str:
        art_full = os.path.join(self._root, *art_rel.split("/"))
        loop = asyncio.get_running_loop()

        picture = await loop.run_in_executor(
            None, read_embedded_picture, os.path.join(self._root, *song_path.split("/")))
        if picture:
            mime, data = picture
            if await loop.run_in_executor(None, write_cover, art_full, mime, data):
                log_debug("AlbumArt", f"Embedded art used: {album.artist} - {album.name}")
                return ART_FOUND

        mbid = await self._find_release(session, album)
        if not mbid:
            log_info("AlbumArt", f"{album.artist} - {album.name} has no results")
            return ART_MISSING

        await self._throttle()
        image_url = f"{self._cover_art_url}/release/{mbid}/front"
        log_info("AlbumArt", f"Downloading {album.artist} - {album.name}: {image_url}")
        async with session.get(image_url) as resp:
            if resp.status == 404:
                log_info("AlbumArt", f"No cover for {album.artist} - {album.name}")
                return ART_MISSING
            if resp.status != 200:
                log_warning("AlbumArt", f"Cover download failed ({resp.status}): {image_url}")
                return ART_FAILED
            content_type = resp.headers.get("Content-Type", "").split(";")[0].strip()
            data = await resp.read()

        if content_type not in ("image/jpeg", "image/png"):
            log_warning("AlbumArt", f"Bad image type: {content_type}")
            return ART_MISSING
        if await loop.run_in_executor(None, write_cover, art_full, content_type, data):
            return ART_FOUND
        return ART_MISSING

    async def _find_release(self, session: aiohttp.ClientSession, album: Album) -> str:
        """Return the MusicBrainz release id of the best match, or ''"""
        await self._throttle()
        params = {
            "query": f'artist:"{album.artist}" AND release:"{album.name}"',
            "fmt": "json",
            "limit": "1",
        }
        log_debug("AlbumArt", f"Fetching {album.artist} {album.name}")
        async with session.get(f"{self._musicbrainz_url}/release", params=params) as resp:
            if resp.status != 200:
                raise aiohttp.ClientResponseError(
                    resp.request_info, resp.history, status=resp.status,
                    message="MusicBrainz search failed")
            data = await resp.json(content_type=None)

        if not isinstance(data, dict):
            raise ValueError("unexpected MusicBrainz response")
        releases = data.get("releases") or []
        if not isinstance(releases, list) or not releases or not isinstance(releases[0], dict):
            return ""
        mbid = releases[0].get("id", "")
        log_debug("AlbumArt", f"{album.artist} {album.name} has mbid {mbid}")
        return mbid

    async def _throttle(self):
        wait = self._last_request + self._interval - time.monotonic()
        if wait > 0:
            await asyncio.sleep(wait)
        self._last_request = time.monotonic()


def _art_path_for(song_path: str) -> str:
    directory = song_path.rsplit("/", 1)[0] if "/" in song_path else ""
    return f"{directory}/{ALBUM_ART_FILE_NAME}" if directory else ALBUM_ART_FILE_NAME
