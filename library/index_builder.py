"""
Index Builder - scan, extract, merge, sort, partition, publish, persist

One scan pass:
1. load the previously persisted index (missing or broken -> empty)
2. walk the library tree
3. reuse resolved songs of the previous index by path
4. extract metadata for the rest on a bounded worker pool
5. sort by (artist, album, track, path)
6. partition into album and artist ranges, probing for Folder.jpg
7. reuse album art results of the previous index by (artist, album)
8. publish the new snapshot
9. resolve missing album art (network, rate limited) and republish
10. persist the index
"""
import asyncio
import os
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from core.errors import MetadataError
from core.utils import log_info, log_debug, log_warning, log_error
from config import ALBUM_ART_FILE_NAME, SCAN_WORKERS
from library.metadata import TrackTags, extract_metadata, build_song, apply_directory_defaults
from library.models import Album, Artist, MusicIndex, MusicLibrary, Song
from library.album_art import AlbumArtResolver
from library.index_store import IndexStore
from library.scanner import DiscoveredFile, walk_library


@dataclass
class ScanReport:
    """Summary of one scan pass"""
    index: MusicIndex
    total_songs: int = 0
    reused_songs: int = 0
    extracted_songs: int = 0
    failed_songs: int = 0
    reused_albums: int = 0
    strange_files: int = 0


def partition(
    songs: Sequence[Song],
    find_art: Callable[[Song], str] = lambda song: "",
) -> Tuple[List[Album], List[Artist]]:
    """
    Split a sorted song sequence into contiguous album and artist ranges.

    Args:
        songs: Songs sorted by (artist, album, track, path)
        find_art: Returns the art path for an album given its first song

    Returns:
        (albums, artists); every song lies in exactly one album range and
        every album in exactly one artist range
    """
    albums: List[Album] = []
    artists: List[Artist] = []
    album_start = 0
    artist_start = 0

    for idx in range(1, len(songs) + 1):
        at_end = idx == len(songs)
        first = songs[album_start]
        if not at_end and (songs[idx].artist, songs[idx].album) == (first.artist, first.album):
            continue

        albums.append(Album(
            name=first.album,
            artist=first.artist,
            start_song_idx=album_start,
            end_song_idx=idx,
            art_path=find_art(first),
        ))
        album_start = idx

        if at_end or songs[idx].artist != first.artist:
            artists.append(Artist(
                name=first.artist,
                start_album_idx=artist_start,
                end_album_idx=len(albums),
            ))
            artist_start = len(albums)

    return albums, artists


class IndexBuilder:
    """
    Builds MusicIndex snapshots from the library folder.

    The scan is not cancellable once started and at most one scan runs at a
    time.
    """

    def __init__(
        self,
        root: str,
        library: MusicLibrary,
        store: Optional[IndexStore] = None,
        art_resolver: Optional[AlbumArtResolver] = None,
        workers: int = SCAN_WORKERS,
        extractor: Callable[[str], TrackTags] = extract_metadata,
    ):
        """
        Initialize index builder.

        Args:
            root: Library root folder
            library: Holder the new snapshots are published to
            store: Persistence for the previous/new index (optional)
            art_resolver: External album art lookup (optional)
            workers: Metadata extraction pool size
            extractor: Metadata extractor for one absolute file path
        """
        self._root = os.path.abspath(root)
        self._library = library
        self._store = store
        self._art_resolver = art_resolver
        self._workers = max(1, workers)
        self._extractor = extractor
        self._scanning = False
        self._progress = 0

    @property
    def is_scanning(self) -> bool:
        return self._scanning

    async def scan(self) -> Optional[ScanReport]:
        """
        Run one full scan pass.

        Returns:
            ScanReport, or None when a scan is already running
        """
        if self._scanning:
            log_warning("Scan", "Scan already running, request ignored")
            return None

        self._scanning = True
        try:
            return await self._scan()
        finally:
            self._scanning = False

    async def _scan(self) -> ScanReport:
        loop = asyncio.get_running_loop()
        log_info("Scan", f"Starting file scan of {self._root}")

        previous = None
        if self._store:
            previous = await loop.run_in_executor(None, self._store.load)
        previous = previous or MusicIndex.empty()

        files, stats = await loop.run_in_executor(None, walk_library, self._root)
        log_info("Scan", f"File scan complete: found {len(files)} songs in {stats.directories} folder(s)")

        # Reuse resolved songs by path
        previous_songs = {song.path: song for song in previous.songs if song.resolved}
        reused: Dict[str, Song] = {}
        pending: List[DiscoveredFile] = []
        for found in files:
            song = previous_songs.get(found.relative_path)
            if song is not None:
                reused[found.relative_path] = song
            else:
                pending.append(found)
        log_info("Scan", f"Reusing {len(reused)} song(s), extracting {len(pending)}")

        extracted = await self._extract_all(pending)
        failed = sum(1 for tags in extracted.values() if tags is None)
        songs = self._merge(files, reused, extracted)

        songs.sort(key=Song.sort_key)
        albums, artists = partition(songs, self._find_folder_art)
        albums, reused_albums = self._reconcile_albums(albums, previous)
        log_info("Scan", f"Found {len(artists)} artists {len(albums)} albums "
                         f"{sum(1 for a in albums if a.art_path)} album art")

        index = MusicIndex.from_parts(songs, albums, artists)
        self._library.publish(index)

        if self._art_resolver:
            try:
                resolved = await self._art_resolver.resolve(index)
            except Exception as e:
                log_error("AlbumArt", f"Album art processing failed: {e}")
                resolved = index
            if resolved is not index:
                index = resolved
                self._library.publish(index)

        if self._store:
            await loop.run_in_executor(None, self._store.save, index)

        return ScanReport(
            index=index,
            total_songs=len(songs),
            reused_songs=len(reused),
            extracted_songs=len(pending) - failed,
            failed_songs=failed,
            reused_albums=reused_albums,
            strange_files=stats.strange_files,
        )

    # ============== Extraction Pool ==============

    async def _extract_all(self, pending: List[DiscoveredFile]) -> Dict[str, Optional[TrackTags]]:
        """Extract metadata for all pending files; failed files map to None"""
        results: Dict[str, Optional[TrackTags]] = {}
        if not pending:
            return results

        queue: asyncio.Queue = asyncio.Queue()
        for found in pending:
            queue.put_nowait(found)
        self._progress = 0
        total = len(pending)
        loop = asyncio.get_running_loop()

        async def worker(executor: ThreadPoolExecutor):
            while True:
                try:
                    found = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    results[found.relative_path] = await loop.run_in_executor(
                        executor, self._extractor, found.full_path)
                except MetadataError as e:
                    log_warning("Metadata", e.message)
                    results[found.relative_path] = None
                except Exception as e:
                    log_warning("Metadata", f"Failed to read {found.full_path}: {e}")
                    results[found.relative_path] = None
                self._progress += 1
                if self._progress % 500 == 0 or self._progress == total:
                    log_debug("Scan", f"Extracted {self._progress}/{total}")

        pool_size = min(self._workers, total)
        with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="scan") as executor:
            await asyncio.gather(*(worker(executor) for _ in range(pool_size)))
        return results

    # ============== Merge ==============

    @staticmethod
    def _merge(
        files: List[DiscoveredFile],
        reused: Dict[str, Song],
        extracted: Dict[str, Optional[TrackTags]],
    ) -> List[Song]:
        """Combine reused and freshly extracted songs, applying directory defaults"""
        by_directory: Dict[str, List[DiscoveredFile]] = defaultdict(list)
        for found in files:
            by_directory[found.directory].append(found)

        # Defaults are decided over the whole directory, reused songs included
        merged: Dict[str, Song] = {}
        for directory_files in by_directory.values():
            built = [reused.get(f.relative_path) or build_song(f.relative_path, extracted.get(f.relative_path))
                     for f in directory_files]
            built = apply_directory_defaults(
                built,
                sibling_count=directory_files[0].sibling_count,
                positions=[f.position for f in directory_files],
            )
            for song in built:
                merged[song.path] = song

        return [merged[found.relative_path] for found in files]

    # ============== Albums ==============

    def _find_folder_art(self, song: Song) -> str:
        directory = song.path.rsplit("/", 1)[0] if "/" in song.path else ""
        rel = f"{directory}/{ALBUM_ART_FILE_NAME}" if directory else ALBUM_ART_FILE_NAME
        if os.path.isfile(os.path.join(self._root, *rel.split("/"))):
            return rel
        return ""

    def _reconcile_albums(self, albums: List[Album], previous: MusicIndex) -> Tuple[List[Album], int]:
        """Carry art results over from the previous index by (artist, album)"""
        previous_albums = {album.key: album for album in previous.albums}
        result = []
        reused = 0
        for album in albums:
            old = previous_albums.get(album.key)
            if old is None:
                result.append(album)
                continue
            reused += 1
            art_path = album.art_path
            if not art_path and old.art_path and os.path.isfile(
                    os.path.join(self._root, *old.art_path.split("/"))):
                art_path = old.art_path
            result.append(replace(album, art_path=art_path, art_processed=old.art_processed))
        return result, reused
