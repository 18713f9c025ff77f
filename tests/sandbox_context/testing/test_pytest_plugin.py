from __future__ import annotations

import tomllib
from collections.abc import Callable
from pathlib import Path

import pytest

from sandbox_context import Context, ModuleConfig
from sandbox_context.api import memcache
from sandbox_context.testing.plugin import PytestReporter


def test_reporter_log_collects_and_prints(capsys: pytest.CaptureFixture[str]) -> None:
    # PLG-01: log lines are kept and printed for pytest's per-test capture.
    reporter = PytestReporter("tests/x.py::test_y")
    reporter.log("[info] hello")

    assert reporter.lines == ["[info] hello"]
    assert "[info] hello" in capsys.readouterr().out


def test_reporter_fatal_fails_the_test() -> None:
    # PLG-02: fatal diagnostics become a pytest failure without traceback.
    reporter = PytestReporter("tests/x.py::test_y")

    with pytest.raises(pytest.fail.Exception, match="tests/x.py::test_y: setup broke"):
        reporter.fatal("setup broke")


def test_sandbox_context_fixture_is_ready(sandbox_context: Context) -> None:
    # PLG-03: the fixture hands out a started context.
    with pytest.raises(memcache.CacheMissError):
        memcache.get(sandbox_context, "missing")
    assert sandbox_context.supervisor.module_names() == ["default"]


def test_sandbox_context_factory_turns_startup_error_into_failure(
    sandbox_context_factory: Callable[..., Context],
) -> None:
    # PLG-04: a broken configuration fails the test through the reporter.
    with pytest.raises(pytest.fail.Exception, match="app_id is required"):
        sandbox_context_factory(modules=[ModuleConfig(name="custom", path="custom.yaml")])


def test_plugin_registered_once_under_module_name(request: pytest.FixtureRequest) -> None:
    # PLG-05: the plugin is known to pytest under its module name, whichever way it was loaded.
    manager = request.config.pluginmanager
    plugin = manager.get_plugin("sandbox_context.testing.plugin")

    assert plugin is not None
    assert [name for name, registered in manager.list_name_plugin() if registered is plugin] == [
        "sandbox_context.testing.plugin"
    ]


def test_pyproject_exposes_plugin_entry_point() -> None:
    # PLG-06: installing the package registers the fixtures through the pytest11 entry point.
    pyproject = Path(__file__).resolve().parents[3] / "pyproject.toml"
    project = tomllib.loads(pyproject.read_text(encoding="utf-8"))

    assert project["project"]["entry-points"]["pytest11"] == {
        "sandbox_context.testing.plugin": "sandbox_context.testing.plugin"
    }
    assert "pytest_plugins" not in project["tool"]["pytest"]["ini_options"]
