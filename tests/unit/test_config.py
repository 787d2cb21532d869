"""
Unit tests for configuration helpers.
"""

import pytest

from sqlh.core import config
from sqlh.core.config import Config, _float_env, _int_env


def test_int_env_falls_back_on_missing_or_bad_values(monkeypatch) -> None:
    monkeypatch.delenv("SQLH_TEST_INT", raising=False)
    assert _int_env("SQLH_TEST_INT", 3) == 3

    monkeypatch.setenv("SQLH_TEST_INT", "   ")
    assert _int_env("SQLH_TEST_INT", 3) == 3

    monkeypatch.setenv("SQLH_TEST_INT", "seven")
    assert _int_env("SQLH_TEST_INT", 3) == 3

    monkeypatch.setenv("SQLH_TEST_INT", "7")
    assert _int_env("SQLH_TEST_INT", 3) == 7


def test_float_env_parses_values(monkeypatch) -> None:
    monkeypatch.setenv("SQLH_TEST_FLOAT", "2.5")
    assert _float_env("SQLH_TEST_FLOAT", 5.0) == 2.5

    monkeypatch.setenv("SQLH_TEST_FLOAT", "fast")
    assert _float_env("SQLH_TEST_FLOAT", 5.0) == 5.0


def test_validate_rejects_empty_db_path(monkeypatch) -> None:
    monkeypatch.setattr(config.Config, "DB_PATH", "")

    with pytest.raises(ValueError):
        Config.validate()


def test_validate_rejects_bad_max_receive(monkeypatch) -> None:
    monkeypatch.setattr(config.Config, "QUEUE_MAX_RECEIVE", 0)

    with pytest.raises(ValueError):
        Config.validate()
