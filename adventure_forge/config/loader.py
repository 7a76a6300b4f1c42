"""
Configuration management and loading.

Handles LLM, storage and regeneration-limit settings.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_MODEL = "gpt-4-turbo-preview"
DEFAULT_DB_PATH = "adventure_forge.db"


@dataclass(frozen=True)
class LLMConfig:
    """LLM collaborator settings."""
    model: str = DEFAULT_MODEL
    timeout_seconds: float = 60.0

    def __post_init__(self):
        """Validate model name and timeout."""
        if not isinstance(self.model, str) or not self.model.strip():
            raise ValueError("llm.model must be a non-empty string")
        if self.timeout_seconds <= 0:
            raise ValueError("llm.timeout_seconds must be > 0")


@dataclass(frozen=True)
class StorageConfig:
    """Location of the SQLite database."""
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate database path."""
        if not isinstance(self.db_path, str) or not self.db_path.strip():
            raise ValueError("storage.db_path must be a non-empty string")


@dataclass(frozen=True)
class RegenerationConfig:
    """Per-adventure regeneration ceilings."""
    scaffold_limit: int = 10
    expansion_limit: int = 20

    def __post_init__(self):
        """Validate limits are positive."""
        if self.scaffold_limit <= 0:
            raise ValueError("regeneration.scaffold_limit must be > 0")
        if self.expansion_limit <= 0:
            raise ValueError("regeneration.expansion_limit must be > 0")


@dataclass(frozen=True)
class ForgeConfig:
    """Complete application configuration."""
    llm: LLMConfig = field(default_factory=LLMConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    regeneration: RegenerationConfig = field(default_factory=RegenerationConfig)


def default_config() -> ForgeConfig:
    """Configuration used when no file is given."""
    return ForgeConfig()


def load_forge_config(path: str) -> ForgeConfig:
    """Load and validate configuration from a YAML file.

    Strict validation ensures no silent misconfigurations: unknown keys and
    wrongly typed values are rejected rather than ignored. Sections that are
    absent keep their defaults.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated ForgeConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'llm', 'storage', 'regeneration'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    llm_data = _section(raw_config, 'llm', {'model', 'timeout_seconds'})
    llm = LLMConfig(
        model=llm_data.get('model', DEFAULT_MODEL),
        timeout_seconds=_number(llm_data, 'timeout_seconds', 60.0, 'llm')
    )

    storage_data = _section(raw_config, 'storage', {'db_path'})
    storage = StorageConfig(db_path=storage_data.get('db_path', DEFAULT_DB_PATH))

    regeneration_data = _section(raw_config, 'regeneration', {'scaffold_limit', 'expansion_limit'})
    regeneration = RegenerationConfig(
        scaffold_limit=_integer(regeneration_data, 'scaffold_limit', 10, 'regeneration'),
        expansion_limit=_integer(regeneration_data, 'expansion_limit', 20, 'regeneration')
    )

    return ForgeConfig(llm=llm, storage=storage, regeneration=regeneration)


def _section(raw_config: Dict[str, Any], name: str, allowed_keys: set) -> Dict[str, Any]:
    """Return a validated config section, empty when absent.

    Raises:
        ValueError: If the section is not a dictionary or has unknown keys
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _number(data: Dict[str, Any], key: str, default: float, path: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _integer(data: Dict[str, Any], key: str, default: int, path: str) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value
