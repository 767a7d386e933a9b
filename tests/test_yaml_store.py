"""Tests for the YAML file backend and its schema validation."""

import pytest
import yaml
from unittest.mock import patch

from stratatm.data import YAMLStorage
from stratatm.data.validate import store_schema, validate_store_data
from stratatm.engine import TaskEngine
from stratatm.recovery import CorruptionError, FileOperationError
from stratatm.version import APP_SCHEMA_VERSION

from conftest import NOW, OWNER


@pytest.fixture
def store_path(tmp_path):
    return tmp_path / "data" / "store.yml"


class TestYAMLStorage:
    """Persistence through the engine."""

    def test_missing_file_starts_empty(self, store_path):
        storage = YAMLStorage(store_path)
        assert storage.items == {}
        assert not store_path.exists()

    def test_round_trip(self, store_path):
        engine = TaskEngine(YAMLStorage(store_path), OWNER, clock=lambda: NOW)
        engine.populate()
        root = engine.create(title="Launch")
        beta = engine.create(title="Beta", parent_id=root.id, type="Mission")
        ga = engine.create(title="GA", parent_id=root.id)
        engine.add_blocker(ga, beta)
        engine.set_unblock_date(beta, NOW)

        reloaded = TaskEngine(YAMLStorage(store_path), OWNER, clock=lambda: NOW)
        reloaded.populate()
        assert dict(reloaded.snapshot.items) == dict(engine.snapshot.items)
        assert set(reloaded.snapshot.task_deps) == set(engine.snapshot.task_deps)
        assert reloaded.snapshot.date_dependency_for(beta.id).unblock_at == NOW
        assert reloaded.is_blocked(ga)

    def test_document_layout(self, store_path):
        storage = YAMLStorage(store_path)
        storage.insert_item({'owner_id': OWNER, 'title': 'x'})

        data = yaml.safe_load(store_path.read_text())
        assert data['schema_version'] == APP_SCHEMA_VERSION
        assert [item['title'] for item in data['items']] == ['x']
        assert data['task_dependencies'] == []

    def test_batch_saves_once(self, store_path):
        storage = YAMLStorage(store_path)
        with patch.object(storage, 'save', wraps=storage.save) as save:
            with storage.batch():
                storage.insert_item({'owner_id': OWNER})
                storage.insert_item({'owner_id': OWNER})
        assert save.call_count == 1

    def test_failed_save_reloads_file(self, store_path):
        storage = YAMLStorage(store_path)
        kept = storage.insert_item({'owner_id': OWNER, 'title': 'kept'})

        with patch('stratatm.data.yaml_store.atomic_write', side_effect=FileOperationError("disk full")):
            with pytest.raises(FileOperationError):
                storage.insert_item({'owner_id': OWNER, 'title': 'lost'})

        assert [item.title for item in storage.items.values()] == ['kept']
        assert list(YAMLStorage(store_path).items) == [kept.id]

    def test_syntax_error_is_corruption(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("items: [unclosed\n")
        with pytest.raises(CorruptionError):
            YAMLStorage(store_path)

    def test_schema_violation_is_corruption(self, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text(yaml.safe_dump({'schema_version': APP_SCHEMA_VERSION, 'items': [{'title': 'no id'}]}))
        with pytest.raises(CorruptionError, match="failed validation"):
            YAMLStorage(store_path)


class TestValidation:
    """JSON schema checks on loaded documents."""

    def test_schema_is_generated_from_models(self):
        schema = store_schema()
        assert schema['$schema'].endswith('2020-12/schema')
        assert 'items' in schema['properties']

    def test_valid_document(self):
        is_valid, errors = validate_store_data({'schema_version': APP_SCHEMA_VERSION})
        assert is_valid
        assert errors == []

    def test_errors_carry_paths(self):
        is_valid, errors = validate_store_data({
            'schema_version': APP_SCHEMA_VERSION,
            'items': [{'id': 'a', 'position': -1}],
        })
        assert not is_valid
        assert any(error.startswith('items/0/position') for error in errors)

    def test_missing_version(self):
        is_valid, errors = validate_store_data({'items': []})
        assert not is_valid
        assert errors[0].startswith('<root>')
