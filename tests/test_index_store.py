"""Tests for index persistence."""
import json

from library.index_store import IndexStore


def test_save_and_load(tmp_path, sample_index):
    store = IndexStore(str(tmp_path / ".music_index.json"))
    assert store.save(sample_index)

    loaded = store.load()

    assert loaded.songs == sample_index.songs
    assert loaded.albums == sample_index.albums
    assert loaded.artists == sample_index.artists
    assert loaded.album_id_by_key == {("Abba", "Gold"): 0, ("Queen", "Jazz"): 1}
    assert not (tmp_path / ".music_index.json.tmp").exists()


def test_file_format(tmp_path, sample_index):
    path = tmp_path / "index.json"
    IndexStore(str(path)).save(sample_index)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["version"] == 1
    assert data["songs"][0]["path"] == "Abba/Gold/01 Dancing Queen.mp3"
    assert data["albums"][0]["art_processed"] is True
    assert data["artists"][1] == {"name": "Queen", "start_album_idx": 1, "end_album_idx": 2}


def test_missing_file(tmp_path):
    assert IndexStore(str(tmp_path / "none.json")).load() is None


def test_corrupt_file(tmp_path):
    path = tmp_path / "index.json"
    path.write_text("{not json", encoding="utf-8")
    assert IndexStore(str(path)).load() is None


def test_unknown_version(tmp_path):
    path = tmp_path / "index.json"
    path.write_text(json.dumps({"version": 99, "songs": []}), encoding="utf-8")
    assert IndexStore(str(path)).load() is None


def test_save_failure_is_reported(tmp_path, sample_index):
    store = IndexStore(str(tmp_path / "missing-dir" / "index.json"))
    assert not store.save(sample_index)
