"""Tests for tag extraction and path-based fallbacks."""
from types import SimpleNamespace

import pytest

from core.errors import MetadataError
from library import metadata
from library.metadata import (
    FILE_AUDIO, FILE_BENIGN, FILE_STRANGE, TrackTags,
    apply_directory_defaults, build_song, classify_file, extract_metadata, names_from_path,
)


def test_classify_file():
    assert classify_file("01 Song.MP3") == FILE_AUDIO
    assert classify_file("track.flac") == FILE_AUDIO
    assert classify_file("Folder.jpg") == FILE_BENIGN
    assert classify_file("._01 Song.mp3") == FILE_BENIGN
    assert classify_file(".DS_Store") == FILE_BENIGN
    assert classify_file("setup.exe") == FILE_STRANGE


def test_names_from_path():
    assert names_from_path("Artist A/AlbumX/01 Song1.mp3") == ("Artist A", "AlbumX", "Song1")
    assert names_from_path("Various/Compilations/Hits/07 Hit.mp3") == ("Compilations", "Hits", "Hit")
    assert names_from_path("AlbumOnly/Song.mp3") == ("AlbumOnly", "AlbumOnly", "Song")
    assert names_from_path("Loose.mp3") == ("", "", "Loose")
    # Only a two digit prefix followed by a space is a track number
    assert names_from_path("A/B/2001 Odyssey.mp3")[2] == "2001 Odyssey"


def test_build_song_prefers_tags():
    tags = TrackTags(title="Real", artist="Band", album="LP", track_num=4, track_total=9, year=1999,
                     duration_secs=200)
    song = build_song("Folder/Other/01 Name.mp3", tags)
    assert (song.title, song.artist, song.album) == ("Real", "Band", "LP")
    assert (song.track_num, song.track_total, song.year, song.duration_secs) == (4, 9, 1999, 200)
    assert song.resolved


def test_build_song_fills_empty_fields_from_path():
    song = build_song("Artist A/AlbumX/02 Song2.mp3", TrackTags(title="Tagged"))
    assert (song.title, song.artist, song.album) == ("Tagged", "Artist A", "AlbumX")


def test_build_song_without_tags_is_unresolved():
    song = build_song("Artist B/AlbumY/Song3.mp3", None)
    assert (song.title, song.artist, song.album) == ("Song3", "Artist B", "AlbumY")
    assert song.duration_secs == 0
    assert not song.resolved


def test_directory_defaults_number_untagged_songs_from_one():
    songs = [build_song(f"A/B/{name}.mp3", TrackTags()) for name in ("x", "y", "z")]
    result = apply_directory_defaults(songs, sibling_count=3)
    assert [s.track_num for s in result] == [1, 2, 3]
    assert [s.track_total for s in result] == [3, 3, 3]


def test_directory_defaults_keep_tagged_numbers():
    songs = [
        build_song("A/B/x.mp3", TrackTags(track_num=5, track_total=10)),
        build_song("A/B/y.mp3", TrackTags()),
    ]
    result = apply_directory_defaults(songs, sibling_count=2)
    assert [s.track_num for s in result] == [5, 0]
    assert [s.track_total for s in result] == [10, 2]


def test_directory_defaults_use_discovery_positions():
    songs = [build_song("A/B/y.mp3", TrackTags())]
    result = apply_directory_defaults(songs, sibling_count=3, positions=[2])
    assert result[0].track_num == 3


def test_extract_metadata_missing_file(tmp_path):
    with pytest.raises(MetadataError):
        extract_metadata(str(tmp_path / "missing.mp3"))


def test_extract_metadata_unrecognized_container(tmp_path, monkeypatch):
    path = tmp_path / "notes.mp3"
    path.write_text("this is not audio")
    monkeypatch.setattr(metadata.mutagen, "File", lambda path, easy=False: None)
    with pytest.raises(MetadataError):
        extract_metadata(str(path))


def _fake_audio(tags, length):
    return SimpleNamespace(tags=tags, info=SimpleNamespace(length=length))


def test_extract_metadata_reads_easy_tags(monkeypatch):
    tags = {
        "title": ["Song"], "artist": ["Guest"], "albumartist": ["Band"], "album": ["LP"],
        "tracknumber": ["3/11"], "date": ["1997-05-01"],
    }
    monkeypatch.setattr(metadata.mutagen, "File", lambda path, easy=False: _fake_audio(tags, 187.6))

    result = extract_metadata("/music/x.mp3")

    assert result == TrackTags(title="Song", artist="Band", album="LP", track_num=3, track_total=11,
                               year=1997, duration_secs=188)


def test_extract_metadata_track_total_tag_and_ffprobe_duration(monkeypatch):
    tags = {"tracknumber": ["7"], "tracktotal": ["12"], "artist": ["Solo"]}
    monkeypatch.setattr(metadata.mutagen, "File", lambda path, easy=False: _fake_audio(tags, 0))
    monkeypatch.setattr(metadata, "probe_media", lambda path: {"duration": 61.2})

    result = extract_metadata("/music/x.ogg")

    assert (result.artist, result.track_num, result.track_total, result.duration_secs) == ("Solo", 7, 12, 61)


def test_extract_metadata_without_tags(monkeypatch):
    monkeypatch.setattr(metadata.mutagen, "File", lambda path, easy=False: _fake_audio(None, 10))
    monkeypatch.setattr(metadata, "probe_media", lambda path: None)
    assert extract_metadata("/music/x.mp3") == TrackTags(duration_secs=10)


def test_directory_defaults_recompute_earlier_defaults():
    earlier = apply_directory_defaults([build_song("A/B/x.mp3", TrackTags())], sibling_count=1)[0]
    assert (earlier.track_num, earlier.track_total) == (1, 1)
    assert earlier.track_num_defaulted and earlier.track_total_defaulted

    tagged = build_song("A/B/y.mp3", TrackTags(track_num=4, track_total=9))
    result = apply_directory_defaults([earlier, tagged], sibling_count=2)

    assert [(s.track_num, s.track_total) for s in result] == [(0, 2), (4, 9)]
    assert not result[0].track_num_defaulted
    assert not result[1].track_total_defaulted
