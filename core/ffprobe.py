"""
FFprobe Utility - Get media information without decoding

Uses ffprobe (part of FFmpeg suite) as a fallback duration/tag probe for
files whose container mutagen cannot measure. Called from the scan worker
pool, so the probe itself is blocking.
"""
import json
import shutil
import subprocess
from typing import Optional, Dict, Any

from core.utils import log_debug, log_warning

_ffprobe_path: Optional[str] = None
_ffprobe_checked = False


def find_ffprobe() -> Optional[str]:
    """Locate the ffprobe binary once; None when it is not installed"""
    global _ffprobe_path, _ffprobe_checked
    if not _ffprobe_checked:
        _ffprobe_path = shutil.which("ffprobe")
        _ffprobe_checked = True
        if _ffprobe_path:
            log_debug("FFprobe", f"Using {_ffprobe_path}")
        else:
            log_debug("FFprobe", "ffprobe not found, duration fallback disabled")
    return _ffprobe_path


def probe_media(path: str, timeout: float = 10.0) -> Optional[Dict[str, Any]]:
    """
    Get media information for a local file using ffprobe.

    Args:
        path: Absolute path of the audio file
        timeout: Timeout in seconds

    Returns:
        Dictionary with media info:
        {
            "codec": "mp3",
            "duration": 235.5,
            "title": "Song Title",
            "artist": "Artist Name",
            "album": "Album Name"
        }
        Returns None if ffprobe is missing or the probe fails.
    """
    ffprobe = find_ffprobe()
    if not ffprobe:
        return None

    cmd = [
        ffprobe,
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        "-select_streams", "a:0",  # First audio stream only
        path
    ]

    try:
        completed = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
            encoding='utf-8',
            errors='ignore'
        )
    except subprocess.TimeoutExpired:
        log_warning("FFprobe", f"Timeout probing {path}")
        return None
    except OSError as e:
        log_warning("FFprobe", f"Failed to run ffprobe: {e}")
        return None

    if not completed.stdout:
        log_debug("FFprobe", f"No output for {path}")
        return None

    try:
        data = json.loads(completed.stdout)
    except json.JSONDecodeError as e:
        log_warning("FFprobe", f"Failed to parse ffprobe output: {e}")
        return None

    streams = data.get("streams", [])
    format_info = data.get("format", {})
    if not streams:
        log_debug("FFprobe", f"No audio streams in {path}")
        return None

    audio_stream = streams[0]
    result = {
        "codec": audio_stream.get("codec_name", ""),
        "duration": 0.0,
        "title": "",
        "artist": "",
        "album": ""
    }

    # Duration: try stream first, then format
    for source in (audio_stream, format_info):
        if "duration" in source:
            try:
                result["duration"] = float(source["duration"])
                break
            except (TypeError, ValueError):
                continue

    # Tag keys may be uppercase or lowercase depending on format
    tags = format_info.get("tags", {})
    for key, value in tags.items():
        key_lower = key.lower()
        if key_lower in ("title", "artist", "album"):
            result[key_lower] = value
    return result
