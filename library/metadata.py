"""
Metadata Extractor - tags and duration for one audio file

Tags are read with mutagen; duration falls back to ffprobe when the
container does not report a length. Empty tag fields are filled from the
directory layout (Artist/Album/NN Title.ext) by the index builder.
"""
import os
import re
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

import mutagen
from mutagen import MutagenError

from core.errors import MetadataError
from core.ffprobe import probe_media
from core.utils import log_debug
from config import AUDIO_EXTENSIONS, BENIGN_EXTENSIONS
from library.models import Song

FILE_AUDIO = "audio"
FILE_BENIGN = "benign"
FILE_STRANGE = "strange"

# "01 Title" -> "Title"
_TRACK_PREFIX = re.compile(r"^[0-9]{2} ")
_YEAR = re.compile(r"^\s*([0-9]{4})")


@dataclass(frozen=True)
class TrackTags:
    """Raw metadata of one file, before any path-based fallback"""
    title: str = ""
    artist: str = ""
    album: str = ""
    track_num: int = 0
    track_total: int = 0
    year: int = 0
    duration_secs: int = 0


def classify_file(name: str) -> str:
    """
    Classify a file name as audio, known-benign or strange.

    Args:
        name: File name (no directory)

    Returns:
        FILE_AUDIO, FILE_BENIGN or FILE_STRANGE
    """
    # macOS AppleDouble sidecar files (._*) are metadata blobs, not audio.
    if name.startswith("._"):
        return FILE_BENIGN
    ext = os.path.splitext(name)[1].lower()
    if name.lower() == ".ds_store":
        ext = ".ds_store"
    if ext in AUDIO_EXTENSIONS:
        return FILE_AUDIO
    if ext in BENIGN_EXTENSIONS:
        return FILE_BENIGN
    return FILE_STRANGE


def _first(tags, *keys: str) -> str:
    for key in keys:
        try:
            value = tags.get(key)
        except (KeyError, ValueError):
            value = None
        if isinstance(value, list):
            value = value[0] if value else None
        if value:
            return str(value).strip()
    return ""


def _parse_number_pair(value: str) -> Tuple[int, int]:
    """Parse "3", "3/12" or "03 of 12" style track values"""
    numbers = re.findall(r"[0-9]+", value or "")
    first = int(numbers[0]) if numbers else 0
    second = int(numbers[1]) if len(numbers) > 1 else 0
    return first, second


def _parse_year(value: str) -> int:
    match = _YEAR.match(value or "")
    return int(match.group(1)) if match else 0


def extract_metadata(full_path: str) -> TrackTags:
    """
    Read tags and duration from an audio file.

    Args:
        full_path: Absolute path of the file

    Returns:
        TrackTags with whatever the file carries (missing fields stay empty)

    Raises:
        MetadataError: The file cannot be opened or its container parsed
    """
    try:
        audio = mutagen.File(full_path, easy=True)
    except (MutagenError, OSError) as e:
        raise MetadataError(f"failed to parse {full_path}: {e}") from e
    if audio is None:
        raise MetadataError(f"unrecognized audio container: {full_path}")

    tags = audio.tags or {}
    track_num, track_total = _parse_number_pair(_first(tags, "tracknumber"))
    if not track_total:
        track_total, _ = _parse_number_pair(_first(tags, "tracktotal", "totaltracks"))

    duration = 0.0
    info = getattr(audio, "info", None)
    length = getattr(info, "length", None)
    if isinstance(length, (int, float)) and length > 0:
        duration = float(length)
    else:
        probed = probe_media(full_path)
        if probed:
            duration = probed["duration"]
            log_debug("Metadata", f"Duration from ffprobe: {full_path} ({duration:.1f}s)")

    return TrackTags(
        title=_first(tags, "title"),
        artist=_first(tags, "albumartist", "artist"),
        album=_first(tags, "album"),
        track_num=track_num,
        track_total=track_total,
        year=_parse_year(_first(tags, "date", "year", "originaldate")),
        duration_secs=int(round(duration)),
    )


def names_from_path(relative_path: str) -> Tuple[str, str, str]:
    """
    Derive (artist, album, title) from a library-relative path.

    "Artist/Album/01 Title.mp3" -> ("Artist", "Album", "Title"). With only two
    segments the parent directory doubles as the artist.
    """
    bits = [b for b in relative_path.split("/") if b]
    artist = album = ""
    if len(bits) >= 3:
        artist = bits[-3]
    elif len(bits) == 2:
        artist = bits[-2]
    if len(bits) >= 2:
        album = bits[-2]

    title = os.path.splitext(bits[-1])[0] if bits else ""
    title = _TRACK_PREFIX.sub("", title, count=1)
    return artist, album, title


def build_song(relative_path: str, tags: Optional[TrackTags]) -> Song:
    """
    Create a Song from extracted tags, filling empty text fields from the path.

    Args:
        relative_path: Library-relative path
        tags: Extracted tags, or None when extraction failed

    Returns:
        Song; resolved only when tags were extracted
    """
    resolved = tags is not None
    tags = tags or TrackTags()
    artist, album, title = tags.artist, tags.album, tags.title
    if not (artist and album and title):
        path_artist, path_album, path_title = names_from_path(relative_path)
        artist = artist or path_artist
        album = album or path_album
        title = title or path_title

    return Song(
        path=relative_path,
        title=title,
        artist=artist,
        album=album,
        track_num=tags.track_num,
        track_total=tags.track_total,
        year=tags.year,
        duration_secs=tags.duration_secs,
        resolved=resolved,
    )


def _without_defaults(song: Song) -> Song:
    """Strip track values a previous pass derived from the directory"""
    changes = {}
    if song.track_num_defaulted:
        changes.update(track_num=0, track_num_defaulted=False)
    if song.track_total_defaulted:
        changes.update(track_total=0, track_total_defaulted=False)
    return replace(song, **changes) if changes else song


def apply_directory_defaults(
    songs: List[Song],
    sibling_count: int,
    positions: Optional[List[int]] = None,
) -> List[Song]:
    """
    Fill track numbers and totals for all songs of one directory.

    Songs reused from an earlier scan are passed in together with freshly
    extracted ones; values they got from an earlier pass are recomputed.

    Args:
        songs: Songs of one directory, in discovery order
        sibling_count: Number of audio files found in that directory
        positions: Discovery position of each song within the directory
            (defaults to list order)

    Returns:
        New list of songs: zero totals become the sibling count, and when no
        song in the directory had a tagged track number, track numbers follow
        discovery order starting at 1.
    """
    songs = [_without_defaults(song) for song in songs]
    found_track_nums = any(song.track_num > 0 for song in songs)
    if positions is None:
        positions = list(range(len(songs)))

    result = []
    for position, song in zip(positions, songs):
        changes = {}
        if song.track_total == 0:
            changes.update(track_total=sibling_count, track_total_defaulted=True)
        if not found_track_nums:
            changes.update(track_num=position + 1, track_num_defaulted=True)
        result.append(replace(song, **changes) if changes else song)
    return result
