import time

import pytest

from partysheet.locking import FileLock, LockTimeoutError


def test_lock_is_exclusive(tmp_path):
    path = tmp_path / "store.lock"
    with FileLock(path) as held:
        assert held.locked
        contender = FileLock(path, timeout=0.2, interval=0.05)
        started = time.monotonic()
        with pytest.raises(LockTimeoutError):
            contender.acquire()
        assert time.monotonic() - started < 1.0
        assert not contender.locked
    assert not held.locked


def test_lock_reacquired_after_release(tmp_path):
    path = tmp_path / "store.lock"
    first = FileLock(path)
    first.acquire()
    first.release()
    with FileLock(path, timeout=0.1):
        pass
    assert path.exists()


def test_release_without_acquire_is_noop(tmp_path):
    FileLock(tmp_path / "x.lock").release()
