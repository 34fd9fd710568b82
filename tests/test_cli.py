"""
CLI 명령어 테스트
"""

import pytest
from typer.testing import CliRunner

from config.adapters import initialize_config
from main import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def testing_environment(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "testing")
    initialize_config()


class TestMainCommands:
    def test_version(self):
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert "1.0.0" in result.stdout

    def test_config_lists_providers(self):
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "testing" in result.stdout
        assert "gmail" in result.stdout
        assert "unified" in result.stdout

    def test_conflict_resolve_rejects_unknown_policy(self):
        result = runner.invoke(app, ["conflicts", "resolve", "00000000-0000-0000-0000-000000000000",
                                     "--resolution", "coinflip"])

        assert result.exit_code != 0
