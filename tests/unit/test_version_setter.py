"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""
from pathlib import Path

import pytest
import version_setter


@pytest.mark.parametrize(
    ("git_ver", "expected"),
    [
        ("v1.2.0", "1.2.0"),
        ("1.2.0-3-gabc123", "1.2.0.dev3+gabc123"),
        ("abc123", "0.0.1.dev0+unknownabc123"),
    ],
)
def test_version_from_git_describe(git_ver: str, expected: str) -> None:
    assert version_setter.version_from_git_describe(git_ver) == expected


def test_save_and_read_version(tmp_path: Path) -> None:
    version_file = tmp_path / "version.py"
    assert not version_setter.save_version(new_ver="", old_ver=None, version_file=str(version_file))
    assert version_setter.read_file_version(str(version_file)) is None
    assert version_setter.save_version(new_ver="1.2.0.dev3+gabc123", old_ver=None, version_file=str(version_file))
    assert version_setter.read_file_version(str(version_file)) == "1.2.0.dev3+gabc123"
