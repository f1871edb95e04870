"""
Unit tests for core.yaml module.

Tests:
- Mapping files load as dicts
- Empty files load as empty dicts
- Missing files, invalid YAML and non-mapping documents are rejected
"""

from pathlib import Path

import pytest

from chainmirror.core.exceptions import ConfigurationError
from chainmirror.core.yaml import load_yaml


class TestLoadYaml:
    """load_yaml() behaviour."""

    def test_mapping(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("gate:\n  max_concurrency: 8\njobs:\n  pool_list:\n    interval: 60\n")

        assert load_yaml(path) == {
            "gate": {"max_concurrency": 8},
            "jobs": {"pool_list": {"interval": 60}},
        }

    def test_accepts_str_path(self, tmp_path: Path):
        path = tmp_path / "config.yaml"
        path.write_text("a: 1\n")
        assert load_yaml(str(path)) == {"a": 1}

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("key: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_yaml(path)

    def test_non_mapping(self, tmp_path: Path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="must contain a mapping, got list"):
            load_yaml(path)

    def test_tags_not_instantiated(self, tmp_path: Path):
        path = tmp_path / "tagged.yaml"
        path.write_text("x: !!python/object/apply:os.getcwd []\n")
        with pytest.raises(ConfigurationError):
            load_yaml(path)
