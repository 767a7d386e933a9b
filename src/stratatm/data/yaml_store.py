"""
YAMLStorage - file-backed storage for the command line.

The whole store is one YAML document holding every owner's rows. The
document is validated against its JSON schema on load and rewritten with an
atomic replace whenever a write, or a batch of writes, becomes final.
"""
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from stratatm.logs import get_logger
from stratatm.models import StoreDocument
from stratatm.recovery import CorruptionError
from stratatm.version import APP_SCHEMA_VERSION
from .io import atomic_write, load_yaml_file, DATA_YAML
from .storage import MemoryStorage
from .validate import validate_store_data

log = get_logger("data.yaml_store")

STORE_FILENAME = "store.yml"


class YAMLStorage(MemoryStorage):
    """Storage kept in a single YAML file. Failed writes leave the file untouched."""

    def __init__(self, path: Union[Path, str]):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self):
        data = load_yaml_file(self.path)
        if data is None:
            log.info(f"No store at {self.path}, starting empty")
            self.items, self.task_dependencies, self.date_dependencies = {}, {}, {}
            return

        is_valid, errors = validate_store_data(data)
        if not is_valid:
            raise CorruptionError(f"Store {self.path} failed validation: {'; '.join(errors[:5])}")
        try:
            document = StoreDocument.model_validate(data)
        except ValidationError as e:
            raise CorruptionError(f"Store {self.path} could not be read: {e}") from e

        if document.schema_version != APP_SCHEMA_VERSION:
            log.warning(f"Store {self.path} written with schema {document.schema_version}, "
                        f"app uses {APP_SCHEMA_VERSION}")

        self.items = {item.id: item for item in document.items}
        self.task_dependencies = {dep.id: dep for dep in document.task_dependencies}
        self.date_dependencies = {dep.id: dep for dep in document.date_dependencies}
        log.debug(f"Loaded {len(self.items)} items from {self.path}")

    def document(self) -> StoreDocument:
        return StoreDocument(
            schema_version=APP_SCHEMA_VERSION,
            items=list(self.items.values()),
            task_dependencies=list(self.task_dependencies.values()),
            date_dependencies=list(self.date_dependencies.values()),
        )

    def save(self):
        atomic_write(DATA_YAML, self.path, self.document().model_dump(mode='json'), create_dirs=True)

    def _committed(self):
        try:
            self.save()
        except Exception:
            # Memory must not run ahead of the file; fall back to what was last written
            self._load()
            raise
