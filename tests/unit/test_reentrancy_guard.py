"""Unit tests for the non-reentrant guard."""

from __future__ import annotations

import pytest

from rundao.errors import StateConflictError
from rundao.escrow.guard import NonReentrantGuard


class TestNonReentrantGuard:
    def test_nested_call_same_key_rejected(self):
        guard = NonReentrantGuard()
        with guard.hold("distribute", 7):
            with pytest.raises(StateConflictError, match="already in progress"):
                with guard.hold("distribute", 7):
                    pass

    def test_different_keys_do_not_block(self):
        guard = NonReentrantGuard()
        with guard.hold("distribute", 7):
            with guard.hold("distribute", 8):
                with guard.hold("refund", 7):
                    assert guard.is_held("distribute", 7)
                    assert guard.is_held("refund", 7)

    def test_released_after_exit(self):
        guard = NonReentrantGuard()
        with guard.hold("mint", 1):
            pass
        assert not guard.is_held("mint", 1)

    def test_released_after_error(self):
        guard = NonReentrantGuard()
        with pytest.raises(RuntimeError):
            with guard.hold("mint", 1):
                raise RuntimeError("boom")
        assert not guard.is_held("mint", 1)
        with guard.hold("mint", 1):
            assert guard.is_held("mint", 1)
