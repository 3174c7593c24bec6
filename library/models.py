"""
Library data model - songs, albums, artists and the immutable index snapshot

A MusicIndex is built once per scan and never mutated afterwards. Albums and
artists are contiguous half-open ranges over the sorted song and album
sequences, so the whole hierarchy is three flat tuples.
"""
import threading
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

from core.errors import BadRequestError, NotFoundError
from config import MAX_SEARCH_RESULTS


@dataclass(frozen=True)
class Song:
    path: str                      # relative to the library root, "/" separated
    title: str = ""
    artist: str = ""
    album: str = ""
    track_num: int = 0
    track_total: int = 0
    year: int = 0
    duration_secs: int = 0
    resolved: bool = False         # metadata (incl. duration) has been extracted
    track_num_defaulted: bool = False    # track_num came from the directory position
    track_total_defaulted: bool = False  # track_total came from the sibling count

    def sort_key(self) -> Tuple[str, str, int, str]:
        return (self.artist, self.album, self.track_num, self.path)


@dataclass(frozen=True)
class Album:
    name: str
    artist: str
    start_song_idx: int
    end_song_idx: int
    art_path: str = ""             # relative to the library root, "" when missing
    art_processed: bool = False    # external art lookup already attempted

    @property
    def key(self) -> Tuple[str, str]:
        return (self.artist, self.name)


@dataclass(frozen=True)
class Artist:
    name: str
    start_album_idx: int
    end_album_idx: int


# Result types returned by the query API
RESULT_SONG = "Song"
RESULT_ARTIST = "Artist"
RESULT_ALBUM = "Album"
RESULT_ALBUM_HEADER = "AlbumHeader"
RESULT_FOLDER = "Folder"


@dataclass
class Result:
    """One entry of a browse or search listing"""
    name: str
    type: str
    link: str = ""
    audio: str = ""
    artist: str = ""
    album: str = ""
    image: str = ""
    song_id: int = -1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def content_url(relative_path: str) -> str:
    """URL under /content/ for a library-relative path ("" stays "")"""
    if not relative_path:
        return ""
    return "/content/" + relative_path.lstrip("/")


@dataclass(frozen=True)
class MusicIndex:
    """Immutable snapshot of the scanned library"""

    songs: Tuple[Song, ...] = ()
    albums: Tuple[Album, ...] = ()
    artists: Tuple[Artist, ...] = ()
    album_id_by_key: Dict[Tuple[str, str], int] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "MusicIndex":
        return cls()

    @classmethod
    def from_parts(cls, songs, albums, artists) -> "MusicIndex":
        album_id_by_key = {album.key: idx for idx, album in enumerate(albums)}
        return cls(tuple(songs), tuple(albums), tuple(artists), album_id_by_key)

    # ============== Lookups ==============

    def album_songs(self, album: Album) -> Tuple[Song, ...]:
        return self.songs[album.start_song_idx:album.end_song_idx]

    def artist_albums(self, artist: Artist) -> Tuple[Album, ...]:
        return self.albums[artist.start_album_idx:artist.end_album_idx]

    def album_for_song(self, song_id: int) -> Optional[Album]:
        song = self.songs[song_id]
        album_id = self.album_id_by_key.get((song.artist, song.album))
        if album_id is None:
            return None
        return self.albums[album_id]

    def get_song(self, song_id: int) -> Song:
        if song_id < 0 or song_id >= len(self.songs):
            raise NotFoundError(f"song {song_id} not found")
        return self.songs[song_id]

    # ============== Result Builders ==============

    @staticmethod
    def _album_result(album: Album, header: bool) -> Result:
        return Result(
            name=album.name,
            type=RESULT_ALBUM_HEADER if header else RESULT_ALBUM,
            link="albums/" + album.name,
            artist=album.artist,
            album=album.name,
            image=content_url(album.art_path),
        )

    @staticmethod
    def _artist_result(artist: Artist) -> Result:
        return Result(
            name=artist.name,
            type=RESULT_ARTIST,
            link="artists/" + artist.name,
            artist=artist.name,
        )

    def _song_result(self, album: Optional[Album], song_id: int) -> Result:
        song = self.songs[song_id]
        return Result(
            name=song.title,
            type=RESULT_SONG,
            audio=content_url(song.path),
            artist=song.artist,
            album=song.album,
            image=content_url(album.art_path) if album else "",
            song_id=song_id,
        )

    def _album_listing(self, album: Album) -> List[Result]:
        results = [self._album_result(album, True)]
        for song_id in range(album.start_song_idx, album.end_song_idx):
            results.append(self._song_result(album, song_id))
        return results

    # ============== Query API ==============

    def query(self, kind: str, path: str = "") -> List[Result]:
        """
        Browse the index.

        Args:
            kind: "" (root folders), "artists", "albums" or "songs"
            path: Optional artist or album name

        Returns:
            List of results

        Raises:
            BadRequestError: Unknown kind
            NotFoundError: Unknown artist or album name
        """
        if kind == "":
            return [
                Result(name="Artists", type=RESULT_FOLDER, link="artists"),
                Result(name="Albums", type=RESULT_FOLDER, link="albums"),
                Result(name="Songs", type=RESULT_FOLDER, link="songs"),
            ]

        if kind == "artists":
            if not path:
                return [self._artist_result(artist) for artist in self.artists]
            for artist in self.artists:
                if artist.name == path:
                    results = []
                    for album in self.artist_albums(artist):
                        results.extend(self._album_listing(album))
                    return results
            raise NotFoundError(f"artist not found: {path}")

        if kind == "albums":
            if not path:
                return [self._album_result(album, False) for album in self.albums]
            for album in self.albums:
                if album.name == path:
                    return self._album_listing(album)
            raise NotFoundError(f"album not found: {path}")

        if kind == "songs":
            results = []
            for album in self.albums:
                for song_id in range(album.start_song_idx, album.end_song_idx):
                    results.append(self._song_result(album, song_id))
            return results

        raise BadRequestError(f"unknown listing: {kind}")

    def search(self, term: str, limit: int = MAX_SEARCH_RESULTS) -> List[Result]:
        """Case-insensitive substring search over artists, albums and song titles"""
        needle = term.casefold()
        if not needle:
            return []

        results: List[Result] = []
        for artist in self.artists:
            if needle in artist.name.casefold():
                results.append(self._artist_result(artist))
                if len(results) >= limit:
                    return results
        for album in self.albums:
            if needle in album.name.casefold():
                results.append(self._album_result(album, False))
                if len(results) >= limit:
                    return results
        for song_id, song in enumerate(self.songs):
            if needle in song.title.casefold():
                results.append(self._song_result(self.album_for_song(song_id), song_id))
                if len(results) >= limit:
                    return results
        return results


class MusicLibrary:
    """
    Holder of the single live MusicIndex snapshot.

    Readers borrow the current reference; the index builder swaps in a fully
    built replacement. The lock only guards the pointer, never any work.
    """

    def __init__(self, index: Optional[MusicIndex] = None):
        self._lock = threading.Lock()
        self._index = index or MusicIndex.empty()

    def snapshot(self) -> MusicIndex:
        with self._lock:
            return self._index

    def publish(self, index: MusicIndex):
        with self._lock:
            self._index = index
