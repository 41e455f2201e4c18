"""Process-wide settings read once from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional

from .assertion import assert_that


class ConfigError(Exception):
    """Raised when a required setting is missing or a value fails validation."""


@dataclass(frozen=True)
class ConfigItemDescription:
    """Declaration of one setting: its environment key, default and validator.

    A validator takes the resolved value and raises ``ValueError`` if it is invalid.
    """

    key: str
    optional: bool = False
    default: str = ""
    validate: Optional[Callable[[str], None]] = None


_settings: dict[str, str] | None = None


def initialize_config_module(configs: list[ConfigItemDescription]) -> None:
    """Resolve every declared setting from the environment, replacing earlier ones."""
    global _settings
    settings: dict[str, str] = {}
    _settings = settings

    for description in configs:
        env_value = os.environ.get(description.key, "")
        if not env_value and not description.optional:
            raise ConfigError(f"option {description.key} is not set")
        value = env_value or description.default

        if description.validate is not None:
            try:
                description.validate(value)
            except ConfigError:
                raise
            except ValueError as exc:
                raise ConfigError(str(exc)) from exc

        settings[description.key] = value


def get_value(key: str) -> str:
    """Return the resolved value of ``key``, or an empty string if it was never declared."""
    assert_that(_settings is not None, "static config module has never been initialized")
    return _settings.get(key, "")