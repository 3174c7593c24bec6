"""
Library scanner - recursive walk of the music folder

Produces the ordered list of audio files the index builder works on. Each
file remembers its position among the audio files of its own directory,
which drives the track-number and track-total fallbacks.
"""
import os
from dataclasses import dataclass
from typing import List, Tuple

from core.utils import log_info, log_warning
from config import INDEX_FILE_NAME
from library.metadata import classify_file, FILE_AUDIO, FILE_BENIGN


@dataclass(frozen=True)
class DiscoveredFile:
    relative_path: str      # "/" separated, relative to the library root
    full_path: str
    directory: str          # relative directory ("" for the root)
    position: int           # order among audio files of the same directory
    sibling_count: int      # audio files in the same directory


@dataclass
class ScanStats:
    directories: int = 0
    audio_files: int = 0
    benign_files: int = 0
    strange_files: int = 0
    unreadable_directories: int = 0


def _relative(root: str, path: str) -> str:
    rel = os.path.relpath(path, root)
    if rel == ".":
        return ""
    return rel.replace(os.sep, "/")


def _scan_directory(root: str, folder: str, found: List[DiscoveredFile], stats: ScanStats):
    try:
        with os.scandir(folder) as it:
            entries = sorted(it, key=lambda e: e.name)
    except OSError as e:
        stats.unreadable_directories += 1
        log_warning("Scan", f"Cannot read directory {folder}: {e}")
        return

    stats.directories += 1
    audio_paths = []
    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            _scan_directory(root, entry.path, found, stats)
            continue

        if entry.name.startswith(INDEX_FILE_NAME):
            continue
        kind = classify_file(entry.name)
        if kind == FILE_AUDIO:
            audio_paths.append(entry.path)
        elif kind == FILE_BENIGN:
            stats.benign_files += 1
        else:
            stats.strange_files += 1
            log_info("Scan", f"Found strange file {entry.path}")

    directory = _relative(root, folder)
    for position, full_path in enumerate(audio_paths):
        found.append(DiscoveredFile(
            relative_path=_relative(root, full_path),
            full_path=full_path,
            directory=directory,
            position=position,
            sibling_count=len(audio_paths),
        ))
    stats.audio_files += len(audio_paths)


def walk_library(root: str) -> Tuple[List[DiscoveredFile], ScanStats]:
    """
    Recursively enumerate the library.

    Args:
        root: Library root folder

    Returns:
        (audio files in discovery order, scan statistics)
    """
    found: List[DiscoveredFile] = []
    stats = ScanStats()
    _scan_directory(os.path.abspath(root), os.path.abspath(root), found, stats)
    return found, stats
