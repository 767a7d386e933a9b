import getpass
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from stratatm.data.io import load_yaml_file
from stratatm.logs import get_logger
from stratatm.recovery import CorruptionError

log = get_logger("config")

DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "stratatm" / "data"
CONFIG_FILENAME = "config.yml"


def _default_owner() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "local"


class Settings(BaseModel):
    """Runtime settings: defaults, overridden by config.yml, overridden by the environment."""

    data_dir: Path = Field(default=DEFAULT_DATA_DIR, description="Directory holding store.yml and config.yml")
    owner_id: str = Field(default_factory=_default_owner, description="Owner all reads and writes are scoped to")
    store_filename: str = Field(default="store.yml", description="Name of the YAML store inside data_dir")

    @field_validator('owner_id')
    @classmethod
    def validate_owner(cls, v):
        if not v or not v.strip():
            raise ValueError("owner_id must not be empty")
        return v.strip()

    @property
    def store_path(self) -> Path:
        return self.data_dir / self.store_filename

    @classmethod
    def load(cls, data_dir: Optional[Path] = None) -> 'Settings':
        env_dir = os.getenv('STRATATM_DATA_DIR')
        data_dir = Path(data_dir or env_dir or DEFAULT_DATA_DIR).expanduser()

        values = {}
        file_values = load_yaml_file(data_dir / CONFIG_FILENAME)
        if file_values:
            log.debug(f"Read settings from {data_dir / CONFIG_FILENAME}")
            values.update(file_values)
        values['data_dir'] = data_dir

        env_owner = os.getenv('STRATATM_OWNER')
        if env_owner:
            values['owner_id'] = env_owner

        try:
            return cls(**values)
        except ValidationError as e:
            raise CorruptionError(f"Invalid settings in {data_dir / CONFIG_FILENAME}: {e}") from e
