"""Kurtarma önbelleği: TTL, best-effort yazma, state kayıtları."""
from app.core.database import make_engine
from app.services.artifact_cache import ArtifactCache, image_key, state_key


def test_put_then_get(cache: ArtifactCache):
    assert cache.put("U1", "job1", b"img-bytes", "image/png", attempt=1)
    img = cache.get("U1", "job1")
    assert img.data == b"img-bytes"
    assert img.content_type == "image/png"


def test_get_miss_returns_none(cache: ArtifactCache):
    assert cache.get("U1", "missing") is None


def test_overwrite_is_safe(cache: ArtifactCache):
    cache.put("U1", "job1", b"first")
    cache.put("U1", "job1", b"second", attempt=2)
    assert cache.get("U1", "job1").data == b"second"
    assert cache.stats_for_user("U1")["images"] == 1


def test_expired_entry_is_a_miss(cache: ArtifactCache, clock):
    cache.put("U1", "job1", b"img")
    clock.advance(3600 * 1000 + 1)
    assert cache.get("U1", "job1") is None
    assert cache.list_for_user("U1") == []


def test_put_failure_is_swallowed():
    broken = ArtifactCache(make_engine("sqlite:///:memory:"))  # tablo yok
    assert broken.put("U1", "job1", b"img") is False
    assert broken.get("U1", "job1") is None
    assert broken.put_state("U1", "job1", {"x": 1}) is False


def test_state_roundtrip_and_cleanup(cache: ArtifactCache):
    cache.put("U1", "job1", b"img")
    cache.put_state("U1", "job1", {"phase": "timeout_recovery", "pass": 1}, status="partial", attempt=1)
    state = cache.get_state("U1", "job1")
    assert state["analysis"] == {"phase": "timeout_recovery", "pass": 1}
    assert state["status"] == "partial"
    assert sorted(cache.list_for_user("U1")) == sorted([image_key("U1", "job1"), state_key("U1", "job1")])
    assert cache.stats_for_user("U1") == {"total_keys": 2, "images": 1, "states": 1}
    cache.cleanup("U1", "job1")
    assert cache.get("U1", "job1") is None
    assert cache.get_state("U1", "job1") is None


def test_delete_only_removes_image(cache: ArtifactCache):
    cache.put("U1", "job1", b"img")
    cache.put_state("U1", "job1", {"a": 1})
    cache.delete("U1", "job1")
    assert cache.get("U1", "job1") is None
    assert cache.get_state("U1", "job1") is not None


def test_purge_expired(cache: ArtifactCache, clock):
    cache.put("U1", "old", b"img")
    clock.advance(3600 * 1000 + 1)
    cache.put("U1", "new", b"img")
    assert cache.purge_expired() == 1
    assert cache.get("U1", "new") is not None
