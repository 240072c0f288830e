"""Shared fixtures for photoflow tests."""

from pathlib import Path

import pytest
from PIL import Image

from photoflow_runner.catalog import StageCatalog


@pytest.fixture
def catalog(tmp_path):
    """Empty catalog with every stage directory created."""
    cat = StageCatalog(tmp_path / "storage")
    cat.ensure_layout()
    return cat


@pytest.fixture
def make_image():
    """Factory writing a solid-color image and returning its path."""

    def _make(path: Path, size=(600, 600), color=(200, 30, 30), mode="RGB", fmt=None) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        Image.new(mode, size, color).save(path, format=fmt)
        return path

    return _make
