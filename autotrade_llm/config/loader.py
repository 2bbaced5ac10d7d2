"""
Configuration loader for YAML/JSON files.
"""

import json
import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from autotrade_llm.errors import ConfigurationError
from .config_schema import Config


def _expand_env_vars(config_dict):
    """Recursively expand environment variables in config dictionary"""
    if isinstance(config_dict, dict):
        return {k: _expand_env_vars(v) for k, v in config_dict.items()}
    elif isinstance(config_dict, list):
        return [_expand_env_vars(item) for item in config_dict]
    elif isinstance(config_dict, str):
        # Expand environment variables like ${VAR_NAME}
        return os.path.expandvars(config_dict)
    else:
        return config_dict


def load_config(config_path: Optional[Union[str, Path]] = None, **overrides) -> Config:
    """
    Load configuration from a YAML or JSON file.

    Args:
        config_path: Path to config file; defaults are used when None
        **overrides: Top-level or dotted ("llm.model") values applied after loading

    Returns:
        Validated Config

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    config_dict = {}

    if config_path is not None:
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        with open(config_path, 'r') as f:
            if config_path.suffix in ['.yaml', '.yml']:
                config_dict = yaml.safe_load(f) or {}
            elif config_path.suffix == '.json':
                config_dict = json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config format: {config_path.suffix}")

        config_dict = _expand_env_vars(config_dict)

    for key, value in overrides.items():
        if value is None:
            continue
        section = config_dict
        *parents, leaf = key.split(".")
        for parent in parents:
            section = section.setdefault(parent, {})
        section[leaf] = value

    try:
        return Config(**config_dict)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Config validation failed: {e}")

