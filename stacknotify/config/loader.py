import os
import re
from pathlib import Path
from typing import Optional, Type, TypeVar

import structlog
import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from stacknotify.config.schema import Settings
from stacknotify.errors import ConfigError

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_CONFIG_PATH = "~/.stacknotify/stacknotify.yml"
CONFIG_PATH_ENV = "STACKNOTIFY_CONFIG_PATH"


def expand_env_vars(config: object) -> object:
    """Recursively replace ${VAR} patterns with environment variable values.

    Unknown variables are left as-is.
    """
    if isinstance(config, dict):
        return {k: expand_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [expand_env_vars(item) for item in config]
    if isinstance(config, str):

        def replace_env_var(match: re.Match[str]) -> str:
            env_var = match.group(1)
            return os.getenv(env_var, match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, config)
    return config


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if model.model_extra:
        logger.warning("Unknown config keys", section=path, config_path=str(config_path), keys=list(model.model_extra))

    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def load_config(path: Path, model_class: Type[T]) -> T:
    """Load and validate configuration from a YAML file.

    A missing or unreadable file yields the model defaults. A file that
    parses but does not validate raises ConfigError.
    """
    if not path.exists():
        return model_class()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to read config file", config_path=str(path), error=str(e))
        return model_class()

    try:
        model = model_class.model_validate(expand_env_vars(raw))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e
    _warn_unknown_keys(model, "root", path)
    return model


def load_settings(path: Optional[Path] = None, env_file: Optional[Path] = None) -> Settings:
    """Load worker settings.

    ``.env`` is loaded first so ``${VAR}`` references in the YAML resolve
    against it. The config path comes from the argument, then
    ``STACKNOTIFY_CONFIG_PATH``, then the default location.
    """
    load_dotenv(env_file)
    if path is None:
        path = Path(os.getenv(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    return load_config(path.expanduser(), Settings)
