"""
Unit tests for the console harness setup
"""

import sys
import os
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

import logging

import pytest

import main


@pytest.fixture
def console_env(monkeypatch):
    monkeypatch.setenv("FRA_CATALOG_PATH", os.path.join(ROOT, "data", "question_catalog.json"))
    monkeypatch.setenv("FRA_KNOWLEDGE_BASE_PATH", os.path.join(ROOT, "data", "knowledge_base.json"))
    monkeypatch.delenv("FRA_LLM_PROVIDER", raising=False)
    monkeypatch.delenv("FRA_LOCAL_DEVICE", raising=False)

    calls = []
    monkeypatch.setattr(main.logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
    return monkeypatch, calls


@pytest.mark.parametrize("env_level,expected", [
    ("debug", logging.DEBUG),
    ("WARNING", logging.WARNING),
    ("nonsense", logging.INFO),
])
def test_log_level_from_environment(console_env, env_level, expected):
    monkeypatch, calls = console_env
    monkeypatch.setenv("LOG_LEVEL", env_level)

    assert main.main([]) == 0

    assert len(calls) == 1
    assert calls[0]["level"] == expected


def test_usage_lists_flows(console_env, capsys):
    assert main.main([]) == 0

    out = capsys.readouterr().out
    assert "Usage: python main.py" in out
    assert "cover-letter" in out
    assert "apostille" in out


def test_unknown_flow_exits_with_error(console_env, capsys):
    assert main.main(["no-such-flow"]) == 1
    assert "ERROR" in capsys.readouterr().out


if __name__ == "__main__":
    print("\n" + "=" * 60)
    print("CONSOLE HARNESS TESTS")
    print("=" * 60 + "\n")
    pytest.main([__file__, "-v"])
