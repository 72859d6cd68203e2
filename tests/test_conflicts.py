from tierfs.conflicts import CONFLICT_LOG_FILE, add_conflict, check_conflicts


def _make_conflict(directory, name):
    original = directory / name
    original.write_text("a")
    (directory / (name + ".autotier_conflict")).write_text("b")
    return str(original)


def test_no_log_means_no_conflicts(tmp_path):
    assert check_conflicts(tmp_path) == []


def test_added_conflict_is_reported(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    path = _make_conflict(data, "file.txt")
    add_conflict(path, tmp_path)
    assert check_conflicts(tmp_path) == [path]
    assert (tmp_path / CONFLICT_LOG_FILE).read_text() == path + "\n"


def test_resolved_conflict_is_pruned(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    path = _make_conflict(data, "file.txt")
    add_conflict(path, tmp_path)
    (data / "file.txt.autotier_conflict").unlink()
    assert check_conflicts(tmp_path) == []
    assert (tmp_path / CONFLICT_LOG_FILE).read_text() == ""


def test_missing_file_is_dropped(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    kept = _make_conflict(data, "kept")
    gone = _make_conflict(data, "gone")
    add_conflict(kept, tmp_path)
    add_conflict(gone, tmp_path)
    (data / "gone").unlink()
    assert check_conflicts(tmp_path) == [kept]


def test_order_is_preserved(tmp_path):
    data = tmp_path / "data"
    data.mkdir()
    paths = [_make_conflict(data, name) for name in ["b", "a", "c"]]
    for path in paths:
        add_conflict(path, tmp_path)
    assert check_conflicts(tmp_path) == paths