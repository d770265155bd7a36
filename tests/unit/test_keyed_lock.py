"""
Unit tests for per-key locks.
"""
import pytest

from mediaportal.lib.keyed_lock import KeyedLock, LockStripes


@pytest.mark.unit
def test_try_acquire_is_exclusive_per_key():
    locks = KeyedLock()

    assert locks.try_acquire("library-scan") is True
    assert locks.try_acquire("library-scan") is False
    assert locks.try_acquire("watchlist-sync") is True

    assert locks.held_keys() == {"library-scan", "watchlist-sync"}


@pytest.mark.unit
def test_release_frees_key():
    locks = KeyedLock()
    locks.try_acquire("job")
    locks.release("job")

    assert locks.is_held("job") is False
    assert locks.try_acquire("job") is True


@pytest.mark.unit
def test_release_unheld_key_raises():
    with pytest.raises(RuntimeError):
        KeyedLock().release("never-acquired")


@pytest.mark.unit
def test_hold_releases_on_exit():
    locks = KeyedLock()
    with locks.hold("metrics"):
        assert locks.is_held("metrics")
    assert not locks.is_held("metrics")


@pytest.mark.unit
def test_lock_stripes_are_stable():
    stripes = LockStripes(8)
    assert stripes.lock_for("1.2.3.4") is stripes.lock_for("1.2.3.4")

    with pytest.raises(ValueError):
        LockStripes(0)
