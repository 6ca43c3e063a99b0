"""Tests for retry module."""

from unittest import mock

import pytest

from pvedriver.retry import retry


def test_returns_first_success(no_sleep):
    op = mock.MagicMock(return_value="done")

    assert retry(op, 10, 10) == "done"
    op.assert_called_once()
    no_sleep.assert_not_called()


def test_retries_until_success(no_sleep):
    """Two failures then success: three calls, two sleeps of the fixed delay."""
    op = mock.MagicMock(side_effect=[RuntimeError("locked"), RuntimeError("locked"), None])

    retry(op, 10, 10)

    assert op.call_count == 3
    assert no_sleep.call_args_list == [mock.call(10), mock.call(10)]


def test_raises_last_error_after_exhaustion(no_sleep):
    op = mock.MagicMock(side_effect=[RuntimeError("first"), RuntimeError("second"), RuntimeError("last")])

    with pytest.raises(RuntimeError, match="last"):
        retry(op, 1, 3)

    assert op.call_count == 3
    # no sleep after the final attempt
    assert no_sleep.call_count == 2


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        retry(mock.MagicMock(), 1, 0)


def test_single_attempt_raises_without_sleeping(no_sleep):
    error = RuntimeError("locked")
    op = mock.MagicMock(side_effect=error)

    with pytest.raises(RuntimeError) as exc_info:
        retry(op, 5, 1)

    assert exc_info.value is error
    op.assert_called_once()
    no_sleep.assert_not_called()


def test_exhaustion_is_logged(no_sleep, caplog):
    op = mock.MagicMock(side_effect=RuntimeError("VM is locked"))

    with caplog.at_level("WARNING", logger="pvedriver.retry"), pytest.raises(RuntimeError):
        retry(op, 1, 2)

    messages = [r.getMessage() for r in caplog.records]
    assert messages == ["Attempt 1/2 failed: VM is locked", "Attempt 2/2 failed, giving up: VM is locked"]
