"""Tests for rollout.core.result module."""

import pytest

from rollout.core.result import Err, Ok, Result, is_err, is_ok


class TestOk:
    def test_value(self) -> None:
        result = Ok(42)
        assert result.value == 42
        assert result.is_ok() is True
        assert result.is_err() is False

    def test_unwrap(self) -> None:
        assert Ok(42).unwrap() == 42
        assert Ok(42).unwrap_or(0) == 42

    def test_map(self) -> None:
        assert Ok(21).map(lambda x: x * 2) == Ok(42)

    def test_map_err_is_identity(self) -> None:
        result = Ok(42)
        assert result.map_err(lambda e: f"wrapped: {e}") is result


class TestErr:
    def test_error(self) -> None:
        result = Err("boom")
        assert result.error == "boom"
        assert result.is_ok() is False
        assert result.is_err() is True

    def test_unwrap_raises(self) -> None:
        with pytest.raises(ValueError, match="called unwrap on Err"):
            Err("boom").unwrap()

    def test_unwrap_or(self) -> None:
        assert Err("boom").unwrap_or(7) == 7

    def test_map_is_identity(self) -> None:
        result = Err("boom")
        assert result.map(lambda x: x * 2) is result

    def test_map_err(self) -> None:
        assert Err("boom").map_err(lambda e: e.upper()) == Err("BOOM")


def _half(n: int) -> Result[int, str]:
    if n % 2:
        return Err(f"{n} is odd")
    return Ok(n // 2)


def test_type_guards() -> None:
    assert is_ok(_half(4))
    assert not is_err(_half(4))
    assert is_err(_half(3))


def test_pattern_matching() -> None:
    match _half(3):
        case Ok(value=value):
            pytest.fail(f"unexpected Ok({value})")
        case Err(error=error):
            assert error == "3 is odd"
