"""Tests for nlbtopo.paths module."""

import pathlib

import pytest

from nlbtopo.paths import Paths, top


def test_paths_root_with_nlbtopo_root_set(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that Paths.root returns NLBTOPO_ROOT when set."""
    test_path = "/custom/targets/path"
    monkeypatch.setenv("NLBTOPO_ROOT", test_path)

    paths = Paths()
    assert paths.root == pathlib.Path(test_path)


def test_paths_root_without_nlbtopo_root_raises_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that Paths.root raises RuntimeError when NLBTOPO_ROOT not set."""
    monkeypatch.delenv("NLBTOPO_ROOT", raising=False)

    paths = Paths()
    with pytest.raises(RuntimeError, match="NLBTOPO_ROOT environment variable not set"):
        _ = paths.root


def test_paths_deployments(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that deployments property works with NLBTOPO_ROOT."""
    test_path = "/custom/targets"
    monkeypatch.setenv("NLBTOPO_ROOT", test_path)

    paths = Paths()
    assert paths.deployments == pathlib.Path(test_path) / "__deployments__"


def test_top_with_nlbtopo_top_set(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> None:
    """Test that top() prefers NLBTOPO_TOP over asking git."""
    monkeypatch.setenv("NLBTOPO_TOP", str(tmp_path))

    assert top() == tmp_path
