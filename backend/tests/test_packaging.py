from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

PYPROJECT = Path(__file__).resolve().parents[2] / "pyproject.toml"


def _project():
    with open(PYPROJECT, "rb") as f:
        return tomllib.load(f)["project"]


def test_test_extra_only_lists_tools_the_suite_uses():
    assert _project()["optional-dependencies"]["test"] == ["pytest>=7.0"]


def test_console_script_points_at_cli():
    assert _project()["scripts"]["speechdesk-process"] == "speechdesk.cli:main"
