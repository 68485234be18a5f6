import pytest

from couchdb_changes.feed import sequence
from couchdb_changes.feed.errors import SequenceStoreError
from couchdb_changes.feed.sequence import (
    FileSequenceStore,
    InMemorySequenceStore,
    normalize_position,
)


@pytest.mark.unit
def test_missing_file_reads_as_zero(tmp_path):
    store = FileSequenceStore(tmp_path / "seq")
    assert store.read() == "0"


@pytest.mark.unit
def test_empty_or_blank_file_reads_as_zero(tmp_path):
    path = tmp_path / "seq"
    path.write_text("  \n", encoding="utf-8")
    assert FileSequenceStore(path).read() == "0"


@pytest.mark.unit
def test_unreadable_file_reads_as_zero(tmp_path):
    path = tmp_path / "seq"
    path.mkdir()  # a directory cannot be read as text
    assert FileSequenceStore(path).read() == "0"


@pytest.mark.unit
def test_write_overwrites_single_value_across_instances(tmp_path):
    path = tmp_path / "state" / "seq"
    store = FileSequenceStore(path)

    store.write(43)
    store.write("44-g1AAAAB0eJzLYWBgYMpgTmHgz8tPSTV0MDQy")

    assert path.read_text(encoding="utf-8") == "44-g1AAAAB0eJzLYWBgYMpgTmHgz8tPSTV0MDQy"
    reloaded = FileSequenceStore(path)
    assert reloaded.read() == "44-g1AAAAB0eJzLYWBgYMpgTmHgz8tPSTV0MDQy"
    assert [entry.name for entry in path.parent.iterdir()] == ["seq"]


@pytest.mark.unit
def test_trailing_newline_is_stripped_on_read(tmp_path):
    path = tmp_path / "seq"
    path.write_text("42\n", encoding="utf-8")
    assert FileSequenceStore(path).read() == "42"


@pytest.mark.unit
def test_none_is_written_as_zero(tmp_path):
    store = FileSequenceStore(tmp_path / "seq", fsync=True)
    store.write(None)
    assert (tmp_path / "seq").read_text(encoding="utf-8") == "0"


@pytest.mark.unit
def test_write_failure_is_raised(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    store = FileSequenceStore(blocker / "seq")

    with pytest.raises(SequenceStoreError):
        store.write(1)


@pytest.mark.unit
def test_reset_requires_expected_value(tmp_path):
    store = FileSequenceStore(tmp_path / "seq")
    store.write(200)

    with pytest.raises(ValueError):
        store.reset()

    with pytest.raises(ValueError):
        store.reset(expected=150)

    store.reset(expected=200, new=120)
    assert store.read() == "120"

    store.reset(expected="120")
    assert store.read() == "0"


@pytest.mark.unit
def test_reset_force_skips_check():
    store = InMemorySequenceStore(initial=500)
    store.reset(new=7, force=True)
    assert store.read() == "7"


@pytest.mark.unit
def test_in_memory_store_normalizes_values():
    store = InMemorySequenceStore()
    assert store.read() == "0"
    store.write(12)
    assert store.read() == "12"
    store.write(None)
    assert store.read() == "0"


@pytest.mark.unit
def test_normalize_position():
    assert normalize_position(None) == "0"
    assert normalize_position("") == "0"
    assert normalize_position(0) == "0"
    assert normalize_position(" 17 ") == "17"


@pytest.mark.unit
def test_fsync_covers_file_and_directory(tmp_path, monkeypatch):
    synced = []
    real_fsync = sequence.os.fsync

    def _fsync(fd):
        synced.append(fd)
        real_fsync(fd)

    monkeypatch.setattr(sequence.os, "fsync", _fsync)
    store = FileSequenceStore(tmp_path / "seq", fsync=True)

    store.write("9")

    assert store.read() == "9"
    assert len(synced) == 2


@pytest.mark.unit
def test_failed_replace_leaves_no_temp_file(tmp_path, monkeypatch):
    store = FileSequenceStore(tmp_path / "seq")
    store.write("1")

    def _broken_replace(src, dst):
        raise OSError("replace failed")

    monkeypatch.setattr(sequence.os, "replace", _broken_replace)

    with pytest.raises(SequenceStoreError):
        store.write("2")

    assert [entry.name for entry in tmp_path.iterdir()] == ["seq"]
    assert store.read() == "1"
