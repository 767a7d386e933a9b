"""Tests for settings and file helpers."""

import json
import pytest
import yaml
from unittest.mock import patch

from stratatm.config import Settings, CONFIG_FILENAME
from stratatm.data.io import atomic_write, load_yaml_file, DATA_JSON, DATA_YAML
from stratatm.recovery import CorruptionError, FatalError, FileOperationError


class TestSettings:
    """Layered settings."""

    def test_explicit_directory(self, tmp_path, monkeypatch):
        monkeypatch.delenv('STRATATM_DATA_DIR', raising=False)
        monkeypatch.delenv('STRATATM_OWNER', raising=False)
        settings = Settings.load(tmp_path)
        assert settings.data_dir == tmp_path
        assert settings.store_path == tmp_path / "store.yml"
        assert settings.owner_id

    def test_environment_directory(self, tmp_path, monkeypatch):
        monkeypatch.setenv('STRATATM_DATA_DIR', str(tmp_path))
        assert Settings.load().data_dir == tmp_path

    def test_config_file_then_environment(self, tmp_path, monkeypatch):
        monkeypatch.delenv('STRATATM_OWNER', raising=False)
        (tmp_path / CONFIG_FILENAME).write_text(yaml.safe_dump({'owner_id': 'carol', 'store_filename': 'tasks.yml'}))
        settings = Settings.load(tmp_path)
        assert settings.owner_id == 'carol'
        assert settings.store_path == tmp_path / 'tasks.yml'

        monkeypatch.setenv('STRATATM_OWNER', 'dave')
        assert Settings.load(tmp_path).owner_id == 'dave'

    def test_invalid_config(self, tmp_path, monkeypatch):
        monkeypatch.delenv('STRATATM_OWNER', raising=False)
        (tmp_path / CONFIG_FILENAME).write_text(yaml.safe_dump({'owner_id': '   '}))
        with pytest.raises(CorruptionError):
            Settings.load(tmp_path)


class TestAtomicWrite:
    """Atomic YAML and JSON writes."""

    def test_yaml_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "doc.yml"
        atomic_write(DATA_YAML, path, {'b': 1, 'a': [1, 2]}, create_dirs=True)
        assert load_yaml_file(path) == {'b': 1, 'a': [1, 2]}
        assert list(tmp_path.joinpath("nested").iterdir()) == [path]

    def test_json(self, tmp_path):
        path = tmp_path / "doc.json"
        atomic_write(DATA_JSON, path, {'name': 'strata'})
        assert json.loads(path.read_text()) == {'name': 'strata'}

    def test_unknown_format(self, tmp_path):
        with pytest.raises(FatalError):
            atomic_write(99, tmp_path / "doc", {})
        assert list(tmp_path.iterdir()) == []

    def test_unserializable_data(self, tmp_path):
        with pytest.raises(FatalError):
            atomic_write(DATA_YAML, tmp_path / "doc.yml", {'x': object()})
        assert list(tmp_path.iterdir()) == []

    def test_io_error(self, tmp_path):
        with patch('stratatm.data.io.os.replace', side_effect=OSError("read-only")):
            with pytest.raises(FileOperationError):
                atomic_write(DATA_YAML, tmp_path / "doc.yml", {})
        assert list(tmp_path.iterdir()) == []


class TestLoadYaml:
    """Reading YAML files."""

    def test_missing(self, tmp_path):
        assert load_yaml_file(tmp_path / "nope.yml") is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_yaml_file(path) == {}

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(CorruptionError):
            load_yaml_file(path)
