import os
import threading
import time
from pathlib import Path

import pytest

from tierfs.commands import AdHoc, Command
from tierfs.metadata import Metadata
from tierfs.tier import Quota
from tierfs.tiering import TierEngine


def _write_config(tmp_path: Path, period: int, strict: bool) -> Path:
    fast = tmp_path / "fast"
    slow = tmp_path / "slow"
    fast.mkdir(exist_ok=True)
    slow.mkdir(exist_ok=True)
    cfg = tmp_path / "tierfs.conf"
    cfg.write_text(
        "[Global]\n"
        "Log Level = 0\n"
        f"Tier Period = {period}\n"
        f"Strict Period = {'true' if strict else 'false'}\n"
        f"Run Path = {tmp_path / 'run'}\n"
        "\n"
        "[fast]\n"
        f"Path = {fast}\n"
        "Quota = 100 %\n"
        "\n"
        "[slow]\n"
        f"Path = {slow}\n"
        "Quota = 100 %\n"
    )
    return cfg


@pytest.fixture
def make_engine(tmp_path):
    engines = []

    def factory(period=-1, strict=False):
        engine = TierEngine(_write_config(tmp_path, period, strict))
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        engine.shutdown()


def _fill(directory: Path, names, size=100):
    paths = []
    for name in names:
        p = directory / name
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(b"x" * size)
        paths.append(p)
    return paths


def test_crawl_skips_symlinks_and_temporaries(make_engine):
    engine = make_engine()
    slow = engine.tier_by_id("slow").path
    _fill(slow, ["a.txt", "sub/b.txt", "sub/deeper/c.txt", "sub/.c.txt.autotier.hide"])
    os.symlink(slow / "a.txt", slow / "link")
    found = sorted(p.relative_to(slow).as_posix() for p in engine.crawl(slow))
    assert found == ["a.txt", "sub/b.txt", "sub/deeper/c.txt"]


def test_tier_moves_files_to_first_tier_with_room(make_engine):
    engine = make_engine()
    fast = engine.tier_by_id("fast")
    slow = engine.tier_by_id("slow")
    _fill(slow.path, ["a.txt", "dir/b.txt"])
    assert engine.tier() is True
    assert (fast.path / "a.txt").read_bytes() == b"x" * 100
    assert (fast.path / "dir" / "b.txt").exists()
    assert not (slow.path / "a.txt").exists()
    assert fast.usage == 200
    assert slow.usage == 0
    stored = Metadata.load("a.txt", engine.get_db())
    assert stored.tier_path == str(fast.path)
    assert engine.currently_tiering() is False
    assert engine.files == []


def test_tier_refuses_while_running(make_engine):
    engine = make_engine()
    with engine._tier_lock:
        assert engine.tier() is False


def test_pinned_files_counted_but_not_gathered(make_engine):
    engine = make_engine()
    slow = engine.tier_by_id("slow")
    _fill(slow.path, ["pinned.txt"], size=50)
    Metadata(tier_path=str(slow.path), pinned=True).update("pinned.txt", engine.get_db())
    engine.launch_crawlers()
    assert engine.files == []
    assert slow.usage == 50
    engine.files.clear()
    assert engine.tier() is True
    assert (slow.path / "pinned.txt").exists()
    assert not (engine.tier_by_id("fast").path / "pinned.txt").exists()


def test_sort_orders_by_popularity_descending(make_engine):
    engine = make_engine()
    slow = engine.tier_by_id("slow")
    _fill(slow.path, ["a", "b", "c"])
    engine.launch_crawlers()
    by_name = {f.relative_path.name: f for f in engine.files}
    by_name["a"].metadata.popularity = 1.0
    by_name["b"].metadata.popularity = 30.0
    by_name["c"].metadata.popularity = 7.0
    engine.sort()
    assert [f.relative_path.name for f in engine.files] == ["b", "c", "a"]
    pops = [f.popularity for f in engine.files]
    assert pops == sorted(pops, reverse=True)


def test_simulate_tier_fills_fast_tier_with_most_popular(make_engine):
    engine = make_engine()
    fast = engine.tier_by_id("fast")
    slow = engine.tier_by_id("slow")
    fast.quota = Quota(150, 1.0)
    _fill(slow.path, ["hot", "cold"])
    engine.launch_crawlers()
    by_name = {f.relative_path.name: f for f in engine.files}
    by_name["hot"].metadata.popularity = 50.0
    by_name["cold"].metadata.popularity = 0.5
    engine.sort()
    engine.simulate_tier()
    assert fast.incoming_files == [by_name["hot"]]
    assert slow.incoming_files == []
    assert fast.sim_usage == 100
    assert slow.sim_usage == 100


def test_simulate_tier_moves_unpopular_file_down(make_engine):
    engine = make_engine()
    fast = engine.tier_by_id("fast")
    slow = engine.tier_by_id("slow")
    fast.quota = Quota(150, 1.0)
    _fill(fast.path, ["hot", "cold"])
    engine.launch_crawlers()
    by_name = {f.relative_path.name: f for f in engine.files}
    by_name["hot"].metadata.popularity = 50.0
    by_name["cold"].metadata.popularity = 0.5
    engine.sort()
    engine.simulate_tier()
    engine.move_files()
    assert (fast.path / "hot").exists()
    assert (slow.path / "cold").exists()
    assert not (fast.path / "cold").exists()
    assert fast.incoming_files == [] and slow.incoming_files == []


def test_update_db_stores_gathered_metadata(make_engine):
    engine = make_engine()
    slow = engine.tier_by_id("slow")
    _fill(slow.path, ["a.txt"])
    engine.launch_crawlers()
    engine.files[0].metadata.popularity = 12.5
    engine.update_db()
    assert Metadata.load("a.txt", engine.get_db()).popularity == 12.5


def test_calc_popularity_resets_access_count(make_engine):
    engine = make_engine()
    slow = engine.tier_by_id("slow")
    _fill(slow.path, ["a.txt"])
    engine.launch_crawlers()
    engine.files[0].metadata.access_count = 5
    engine.last_tier_time = time.monotonic() - 10.0
    before = engine.files[0].popularity
    engine.calc_popularity()
    assert engine.files[0].metadata.access_count == 0
    assert engine.files[0].popularity > before


def test_begin_single_pass_with_period(make_engine):
    engine = make_engine(period=0)
    _fill(engine.tier_by_id("slow").path, ["a.txt"])
    engine.begin(daemon_mode=False)
    assert (engine.tier_by_id("fast").path / "a.txt").exists()


def test_begin_without_period_does_not_tier(make_engine):
    engine = make_engine(period=-1)
    _fill(engine.tier_by_id("slow").path, ["a.txt"])
    engine.begin(daemon_mode=False)
    assert (engine.tier_by_id("slow").path / "a.txt").exists()


def test_daemon_runs_queued_oneshot_and_stops(make_engine):
    engine = make_engine(period=-1)
    target = engine.tier_by_id("fast").path / "a.txt"
    _fill(engine.tier_by_id("slow").path, ["a.txt"])
    worker = threading.Thread(target=engine.begin, args=(True,))
    worker.start()
    assert engine.enqueue_work(AdHoc(Command.ONESHOT, [])) is True
    deadline = time.monotonic() + 10
    while not target.exists() and time.monotonic() < deadline:
        time.sleep(0.02)
    engine.stop()
    worker.join(timeout=10)
    assert not worker.is_alive()
    assert target.exists()
    assert engine.oneshot_in_queue is False


def test_strict_period_follows_config(make_engine):
    assert make_engine(strict=True).strict_period() is True


def test_shutdown_releases_lock_and_stops(make_engine):
    engine = make_engine()
    assert engine.lock_file.acquire() is True
    engine.shutdown()
    assert not engine.lock_file.path.exists()
    assert engine.stop_flag is True
    assert engine.db is None