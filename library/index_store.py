"""
IndexStore - Persistent storage of the music index

The last published index is saved as one JSON file in the library root so
the next scan can reuse already extracted metadata and album art results.
"""
import json
import os
from dataclasses import asdict
from typing import Any, Dict, Optional

from core.utils import log_info, log_warning, log_debug
from library.models import Album, Artist, MusicIndex, Song

INDEX_FORMAT_VERSION = 1


class IndexStore:
    """
    JSON file storage for MusicIndex snapshots.

    Structure:
    {
        "version": 1,
        "songs": [{"path": "Artist/Album/01 Song.mp3", "title": "Song", ...}],
        "albums": [{"name": "Album", "artist": "Artist", "start_song_idx": 0, ...}],
        "artists": [{"name": "Artist", "start_album_idx": 0, "end_album_idx": 1}]
    }
    """

    def __init__(self, path: str):
        """
        Initialize store.

        Args:
            path: Index file path
        """
        self._path = path

    @property
    def path(self) -> str:
        return self._path

    def load(self) -> Optional[MusicIndex]:
        """
        Load the persisted index.

        Returns:
            MusicIndex, or None when the file is missing or unreadable
        """
        if not os.path.exists(self._path):
            log_debug("IndexStore", "Index file not found, starting fresh")
            return None

        try:
            with open(self._path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            index = self._decode(data)
        except Exception as e:
            log_warning("IndexStore", f"Failed to load index: {e}")
            return None

        log_info("IndexStore", f"Loaded index with {len(index.songs)} song(s), {len(index.albums)} album(s)")
        return index

    def save(self, index: MusicIndex) -> bool:
        """
        Save the index, replacing the previous file.

        Returns:
            True on success; failures are logged only
        """
        data = {
            "version": INDEX_FORMAT_VERSION,
            "songs": [asdict(song) for song in index.songs],
            "albums": [asdict(album) for album in index.albums],
            "artists": [asdict(artist) for artist in index.artists],
        }
        tmp_path = self._path + ".tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=1, ensure_ascii=False)
            os.replace(tmp_path, self._path)
        except OSError as e:
            log_warning("IndexStore", f"Failed to save index: {e}")
            return False

        log_debug("IndexStore", f"Index saved to {self._path}")
        return True

    @staticmethod
    def _decode(data: Dict[str, Any]) -> MusicIndex:
        version = data.get("version")
        if version != INDEX_FORMAT_VERSION:
            raise ValueError(f"unsupported index version {version}")
        songs = [Song(**item) for item in data.get("songs", [])]
        albums = [Album(**item) for item in data.get("albums", [])]
        artists = [Artist(**item) for item in data.get("artists", [])]
        return MusicIndex.from_parts(songs, albums, artists)
