from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parent.parent


def test_project_metadata_points_at_real_files():
    with open(ROOT / "pyproject.toml", "rb") as f:
        project = tomllib.load(f)["project"]
    readme = project.get("readme")
    if readme is not None:
        assert readme != "spec.md"
        assert (ROOT / readme).is_file()
    for package in ("config", "services", "web"):
        assert (ROOT / package / "__init__.py").is_file()
