"""Tests for the CLI helpers."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from api_health import main as cli

from conftest import ScriptedChecker, retrying


class TestRunChecks:
    def test_all_passing_exit_zero(self, monitor) -> None:
        monitor.registry.register(ScriptedChecker("up", outcomes=[True]))
        monitor.registry.register(ScriptedChecker("flaky", outcomes=[False], retry_policy=retrying(1)))
        assert cli.run_checks(monitor, monitor.registry.ids()) == 0

    def test_failure_exit_one(self, monitor) -> None:
        monitor.registry.register(ScriptedChecker("up", outcomes=[True]))
        monitor.registry.register(ScriptedChecker("down", outcomes=[False]))
        assert cli.run_checks(monitor, monitor.registry.ids()) == 1

    def test_show_status(self, monitor) -> None:
        monitor.registry.register(ScriptedChecker("down", outcomes=[False]))
        monitor.registry.register(ScriptedChecker("never-ran"))
        monitor.run_checker("down")
        assert cli.show_status(monitor) == 0


class TestMain:
    def test_no_command_prints_help(self) -> None:
        with pytest.raises(SystemExit) as exc_info:
            cli.main([])
        assert exc_info.value.code == 1

    def test_unknown_checker_exit_two(self, monitor) -> None:
        with patch.object(cli, "Monitor", return_value=monitor):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["run-checker", "ghost"])
        assert exc_info.value.code == 2

    def test_check_command(self, monitor) -> None:
        monitor.registry.register(ScriptedChecker("down", outcomes=[False]))
        with patch.object(cli, "Monitor", return_value=monitor):
            with pytest.raises(SystemExit) as exc_info:
                cli.main(["check"])
        assert exc_info.value.code == 1
