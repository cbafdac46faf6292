"""Tests for crossdock.core.result module."""

from __future__ import annotations

import pytest

from crossdock.core.result import Err, Ok, Result, is_err, is_ok


class TestOk:
    def test_value(self) -> None:
        result = Ok(42)
        assert result.value == 42
        assert result.is_ok()
        assert not result.is_err()

    def test_unwrap(self) -> None:
        assert Ok("x").unwrap() == "x"
        assert Ok("x").unwrap_or("y") == "x"

    def test_unwrap_err_raises(self) -> None:
        with pytest.raises(ValueError, match="unwrap_err on Ok"):
            Ok(1).unwrap_err()

    def test_map_and_flat_map(self) -> None:
        assert Ok(2).map(lambda v: v * 3) == Ok(6)
        assert Ok(2).flat_map(lambda v: Err(f"bad {v}")) == Err("bad 2")

    def test_map_err_is_identity(self) -> None:
        result = Ok(1)
        assert result.map_err(lambda e: e) is result

    def test_frozen(self) -> None:
        result = Ok(1)
        with pytest.raises(AttributeError):
            result.value = 2  # type: ignore[misc]


class TestErr:
    def test_error(self) -> None:
        result = Err("boom")
        assert result.error == "boom"
        assert result.is_err()
        assert not result.is_ok()

    def test_unwrap_raises(self) -> None:
        with pytest.raises(ValueError, match="boom"):
            Err("boom").unwrap()

    def test_unwrap_or_returns_default(self) -> None:
        assert Err("boom").unwrap_or(7) == 7

    def test_map_err(self) -> None:
        assert Err("a").map_err(str.upper) == Err("A")

    def test_map_is_identity(self) -> None:
        result = Err("a")
        assert result.map(lambda v: v) is result


class TestPatternMatching:
    def test_match(self) -> None:
        def describe(result: Result[int, str]) -> str:
            match result:
                case Ok(value):
                    return f"ok {value}"
                case Err(error):
                    return f"err {error}"

        assert describe(Ok(1)) == "ok 1"
        assert describe(Err("x")) == "err x"

    def test_type_guards(self) -> None:
        assert is_ok(Ok(1))
        assert not is_ok(Err(1))
        assert is_err(Err(1))
        assert not is_err(Ok(1))
