import json
import threading
import time

from card_idler.utils.capability_cache import CapabilityCache


def test_missing_file_starts_empty(tmp_path):
    cache = CapabilityCache(tmp_path / "missing.json")

    assert cache.load() == 0
    assert cache.has(730) is None
    assert len(cache) == 0


def test_persist_and_reload(tmp_path):
    path = tmp_path / "cache.json"
    cache = CapabilityCache(path)
    cache.set(730, True)
    cache.set(10, False)

    assert cache.persist() is True
    assert json.loads(path.read_text(encoding='utf-8')) == {"10": False, "730": True}
    assert not (tmp_path / "cache.json.tmp").exists()

    reloaded = CapabilityCache(path)
    assert reloaded.has(730) is True
    assert reloaded.has(10) is False
    assert 730 in reloaded


def test_persist_skips_clean_cache(tmp_path):
    cache = CapabilityCache(tmp_path / "cache.json")

    assert cache.persist() is False
    assert not (tmp_path / "cache.json").exists()


def test_set_ignores_unknown_and_reports_change(tmp_path):
    cache = CapabilityCache(tmp_path / "cache.json")

    assert cache.set(1, None) is False
    assert cache.set(1, True) is True
    assert cache.set(1, True) is False
    assert cache.has(1) is True


def test_corrupt_file_is_ignored(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text("{not json", encoding='utf-8')

    cache = CapabilityCache(path)

    assert cache.load() == 0
    assert cache.has(1) is None


def test_non_numeric_keys_are_skipped(tmp_path):
    path = tmp_path / "cache.json"
    path.write_text(json.dumps({"730": True, "abc": True, "440": 0}), encoding='utf-8')

    cache = CapabilityCache(path)

    assert cache.summary() == {'total': 2, 'capable': 1, 'not_capable': 1}
    assert cache.capable_ids() == [730]


def test_classify_probes_only_unknown_and_persists(tmp_path):
    path = tmp_path / "cache.json"
    cache = CapabilityCache(path, concurrency=3)
    cache.set(1, True)
    probed = []

    def probe(app_id):
        probed.append(app_id)
        return {2: True, 3: False}.get(app_id)

    result = cache.classify([1, 2, 3, 4], probe)

    assert result == {1: True, 2: True, 3: False}
    assert sorted(probed) == [2, 3, 4]
    assert json.loads(path.read_text(encoding='utf-8')) == {"1": True, "2": True, "3": False}


def test_classify_survives_probe_exception(tmp_path):
    cache = CapabilityCache(tmp_path / "cache.json")

    def probe(app_id):
        if app_id == 2:
            raise RuntimeError("boom")
        return True

    assert cache.classify([1, 2], probe) == {1: True}
    assert cache.has(2) is None


def test_classify_does_not_wait_for_hung_check(tmp_path):
    cache = CapabilityCache(tmp_path / "cache.json", concurrency=2, batch_timeout=0.2)
    release = threading.Event()

    def probe(app_id):
        if app_id == 2:
            release.wait(5)
        return True

    started = time.monotonic()
    try:
        result = cache.classify([1, 2], probe)
        elapsed = time.monotonic() - started
    finally:
        release.set()

    assert result == {1: True}
    assert elapsed < 2
    assert cache.has(2) is None
