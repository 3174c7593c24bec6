"""Tests for the index snapshot query and search API."""
import pytest

from core.errors import BadRequestError, NotFoundError
from library.models import Album, Artist, MusicIndex, MusicLibrary, Song, content_url


def test_root_folders(sample_index):
    results = sample_index.query("")
    assert [(r.name, r.link) for r in results] == [("Artists", "artists"), ("Albums", "albums"), ("Songs", "songs")]


def test_list_artists(sample_index):
    assert [r.name for r in sample_index.query("artists")] == ["Abba", "Queen"]


def test_artist_listing_has_album_headers_then_songs(sample_index):
    results = sample_index.query("artists", "Abba")
    assert [(r.type, r.name) for r in results] == [
        ("AlbumHeader", "Gold"), ("Song", "Dancing Queen"), ("Song", "Waterloo"),
    ]
    assert results[0].image == "/content/Abba/Gold/Folder.jpg"
    assert results[2].song_id == 1
    assert results[2].audio == "/content/Abba/Gold/02 Waterloo.mp3"


def test_album_listing(sample_index):
    results = sample_index.query("albums", "Jazz")
    assert [r.name for r in results] == ["Jazz", "Mustapha"]
    assert results[1].image == ""


def test_all_songs_in_album_order(sample_index):
    assert [r.song_id for r in sample_index.query("songs")] == [0, 1, 2]


def test_unknown_names(sample_index):
    with pytest.raises(NotFoundError):
        sample_index.query("artists", "Nobody")
    with pytest.raises(NotFoundError):
        sample_index.query("albums", "Nothing")
    with pytest.raises(BadRequestError):
        sample_index.query("playlists")


def test_search_is_case_insensitive_and_ordered(sample_index):
    results = sample_index.search("QUEEN")
    assert [(r.type, r.name) for r in results] == [("Artist", "Queen"), ("Song", "Dancing Queen")]


def test_search_limit_and_empty_term(sample_index):
    assert len(sample_index.search("a", limit=2)) == 2
    assert sample_index.search("") == []


def test_album_lookup_tells_same_named_albums_apart():
    songs = [
        Song("Abba/Greatest Hits/01 SOS.mp3", "SOS", "Abba", "Greatest Hits", 1),
        Song("Queen/Greatest Hits/01 Bicycle Race.mp3", "Bicycle Race", "Queen", "Greatest Hits", 1),
    ]
    albums = [
        Album("Greatest Hits", "Abba", 0, 1, "Abba/Greatest Hits/Folder.jpg"),
        Album("Greatest Hits", "Queen", 1, 2, "Queen/Greatest Hits/Folder.jpg"),
    ]
    index = MusicIndex.from_parts(songs, albums, [Artist("Abba", 0, 1), Artist("Queen", 1, 2)])

    assert index.album_for_song(0) is index.albums[0]
    assert index.album_for_song(1) is index.albums[1]
    assert index.search("bicycle")[0].image == "/content/Queen/Greatest Hits/Folder.jpg"


def test_get_song(sample_index):
    assert sample_index.get_song(2).title == "Mustapha"
    with pytest.raises(NotFoundError):
        sample_index.get_song(3)
    with pytest.raises(NotFoundError):
        sample_index.get_song(-1)


def test_sort_key_uses_path_as_tie_break():
    a = Song("x/b.mp3", artist="A", album="B", track_num=1)
    b = Song("x/a.mp3", artist="A", album="B", track_num=1)
    assert sorted([a, b], key=Song.sort_key) == [b, a]


def test_content_url():
    assert content_url("") == ""
    assert content_url("A/B/c.mp3") == "/content/A/B/c.mp3"


def test_library_publish_swaps_snapshot(sample_index):
    library = MusicLibrary()
    assert library.snapshot().songs == ()
    library.publish(sample_index)
    assert library.snapshot() is sample_index
    assert isinstance(MusicIndex.empty(), MusicIndex)
