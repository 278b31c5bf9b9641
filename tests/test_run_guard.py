"""
Tests for the single-flight run guards.
"""

import pytest
from unittest.mock import MagicMock, patch

from ordersync.services.run_guard import _EXTEND_SCRIPT, LocalRunGuard, RedisLeaseGuard, build_run_guard


def test_local_guard_is_single_flight():
    guard = LocalRunGuard()
    assert guard.try_acquire("ch-1") is True
    assert guard.try_acquire("ch-1") is False
    assert guard.is_running("ch-1") is True
    # other keys are independent
    assert guard.try_acquire("ch-2") is True

    guard.release("ch-1")
    assert guard.is_running("ch-1") is False
    assert guard.try_acquire("ch-1") is True


def test_local_guard_release_is_idempotent():
    guard = LocalRunGuard()
    guard.release("never-acquired")
    assert guard.is_running("never-acquired") is False


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis = MagicMock()
    redis.set.return_value = True
    redis.eval.return_value = 1
    redis.exists.return_value = 0
    return redis


def test_redis_guard_acquires_with_nx_px(mock_redis):
    guard = RedisLeaseGuard(mock_redis, ttl_seconds=60)
    assert guard.try_acquire("ch-1") is True

    args, kwargs = mock_redis.set.call_args
    assert args[0] == "ordersync:sync-lease:ch-1"
    assert kwargs == {"nx": True, "px": 60000}


def test_redis_guard_lost_race_returns_false(mock_redis):
    mock_redis.set.return_value = None
    guard = RedisLeaseGuard(mock_redis, ttl_seconds=60)
    assert guard.try_acquire("ch-1") is False
    guard.release("ch-1")
    mock_redis.eval.assert_not_called()


def test_redis_guard_release_checks_owner_token(mock_redis):
    guard = RedisLeaseGuard(mock_redis, ttl_seconds=60)
    guard.try_acquire("ch-1")
    token = mock_redis.set.call_args[0][1]

    guard.release("ch-1")
    args = mock_redis.eval.call_args[0]
    assert args[1:] == (1, "ordersync:sync-lease:ch-1", token)


def test_redis_guard_is_running_reads_key(mock_redis):
    guard = RedisLeaseGuard(mock_redis, ttl_seconds=60)
    mock_redis.exists.return_value = 1
    assert guard.is_running("ch-1") is True


def test_redis_guard_extend_renews_owned_lease(mock_redis):
    guard = RedisLeaseGuard(mock_redis, ttl_seconds=60)
    guard.try_acquire("ch-1")
    token = mock_redis.set.call_args[0][1]

    assert guard.extend("ch-1") is True
    mock_redis.eval.assert_called_once_with(_EXTEND_SCRIPT, 1, "ordersync:sync-lease:ch-1", token, 60000)


def test_redis_guard_extend_without_lease(mock_redis):
    guard = RedisLeaseGuard(mock_redis, ttl_seconds=60)
    assert guard.extend("ch-1") is False
    mock_redis.eval.assert_not_called()


def test_redis_guard_extend_reports_lost_lease(mock_redis):
    guard = RedisLeaseGuard(mock_redis, ttl_seconds=60)
    guard.try_acquire("ch-1")
    mock_redis.eval.return_value = 0
    assert guard.extend("ch-1") is False


def test_local_guard_extend_is_a_no_op():
    guard = LocalRunGuard()
    guard.try_acquire("ch-1")
    assert guard.extend("ch-1") is True
    assert guard.is_running("ch-1") is True


def test_build_run_guard_selects_backend(mock_redis):
    assert isinstance(build_run_guard(), LocalRunGuard)

    settings = MagicMock(SYNC_LOCK_BACKEND="redis", SYNC_LOCK_TTL_SECONDS=30)
    with patch("ordersync.services.run_guard.get_settings", return_value=settings), \
            patch("ordersync.redis.get_redis_client", return_value=mock_redis):
        guard = build_run_guard()
    assert isinstance(guard, RedisLeaseGuard)
    assert guard.ttl_ms == 30000
