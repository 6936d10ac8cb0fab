"""
Configuration for LocalChat.

Values come from, highest precedence first: explicit overrides (CLI flags),
an optional YAML file, ``LOCALCHAT_*`` environment variables, defaults.
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import LocalChatValidationError
from .types import GenerationOptions


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOCALCHAT_", extra="ignore")

    # Model settings
    model: str = "LFM2-1.2B"
    quantization: str = "Q5_K_M"
    system_prompt: str = "You are a helpful travel assistant."

    # Generation settings
    temperature: float = Field(default=0.7, ge=0.0)
    top_p: Optional[float] = Field(default=None, gt=0.0, le=1.0)
    top_k: Optional[int] = Field(default=None, gt=0)
    max_tokens: Optional[int] = Field(default=None, gt=0)

    # Daemon connection settings
    base_url: Optional[str] = None
    socket_path: Optional[str] = None
    api_key: Optional[str] = None
    timeout: float = 60.0
    keep_alive: Optional[str] = None

    log_level: str = "WARNING"  # Can be DEBUG, INFO, WARNING, ERROR, CRITICAL

    def generation_options(self) -> GenerationOptions:
        return GenerationOptions(
            temperature=self.temperature,
            top_p=self.top_p,
            top_k=self.top_k,
            max_tokens=self.max_tokens,
        )


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise LocalChatValidationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise LocalChatValidationError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise LocalChatValidationError(f"Config file {path} must contain a mapping")
    return data


def load_settings(path: Optional[Union[str, Path]] = None, **overrides: Any) -> Settings:
    """Build ``Settings`` from an optional YAML file plus keyword overrides.

    Overrides whose value is ``None`` are ignored so unset CLI options do not
    mask file or environment values.
    """
    values: Dict[str, Any] = _read_yaml(Path(path)) if path is not None else {}
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return Settings(**values)
    except ValidationError as e:
        raise LocalChatValidationError(f"Invalid configuration: {e}") from e
