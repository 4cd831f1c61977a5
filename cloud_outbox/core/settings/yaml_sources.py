"""Custom YAML config source with conf.d directory support.

Extends pydantic-settings YamlConfigSettingsSource to support:
- Main YAML file (e.g., conf/outbox.yaml)
- conf.d directory merging (e.g., conf/outbox.d/*.yaml)

Files in a conf.d directory are applied in alphabetical order, so
``10-base.yaml`` is overridden by ``90-local.yaml``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings import YamlConfigSettingsSource

if TYPE_CHECKING:
    from pydantic_settings import BaseSettings


class ConfDYamlConfigSettingsSource(YamlConfigSettingsSource):
    """YAML settings source with conf.d directory support.

    Supports the standard Linux conf.d pattern:
    - conf/<domain>.yaml        (base configuration)
    - conf/<domain>.d/*.yaml    (override files, merged alphabetically)

    The base directory can be moved per domain with an environment
    variable, e.g. ``OUTBOX_CONFIG_DIR=/etc/cloud-outbox``.
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: str,
        confd_dir: str | None,
        config_dir_env: str,
        base_dir: str = "conf",
        yaml_file_encoding: str | None = "utf-8",
    ) -> None:
        """Initialize the conf.d YAML source.

        Args:
            settings_cls: The settings class being configured.
            yaml_file: Main YAML file name (e.g., "outbox.yaml").
            confd_dir: conf.d subdirectory name (e.g., "outbox.d"), or None to disable.
            config_dir_env: Environment variable to override base directory.
            base_dir: Default base directory for config files.
            yaml_file_encoding: File encoding for YAML files.
        """
        config_base = Path(os.getenv(config_dir_env, base_dir))

        yaml_files: list[Path] = []

        main_file = config_base / yaml_file
        if main_file.exists():
            yaml_files.append(main_file)

        if confd_dir:
            confd_path = config_base / confd_dir
            if confd_path.is_dir():
                yaml_files.extend(sorted(confd_path.glob("*.yaml")))
                yaml_files.extend(sorted(confd_path.glob("*.yml")))

        self._yaml_files = yaml_files

        super().__init__(
            settings_cls=settings_cls,
            yaml_file=yaml_files if yaml_files else None,
            yaml_file_encoding=yaml_file_encoding,
        )

    def __repr__(self) -> str:
        files_str = ", ".join(str(f) for f in self._yaml_files)
        return f"{self.__class__.__name__}(yaml_files=[{files_str}])"


# ============================================================================
# Convenience factory functions for each settings domain
# ============================================================================


def _domain_source(
    settings_cls: type[BaseSettings], domain: str, env_prefix: str
) -> ConfDYamlConfigSettingsSource:
    return ConfDYamlConfigSettingsSource(
        settings_cls,
        yaml_file=f"{domain}.yaml",
        confd_dir=f"{domain}.d",
        config_dir_env=f"{env_prefix}CONFIG_DIR",
    )


def create_app_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for AppSettings (conf/app.yaml, conf/app.d/)."""
    return _domain_source(settings_cls, "app", "APP_")


def create_db_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for PostgresSettings (conf/db.yaml, conf/db.d/)."""
    return _domain_source(settings_cls, "db", "DB_")


def create_rabbit_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for RabbitSettings (conf/rabbit.yaml, conf/rabbit.d/)."""
    return _domain_source(settings_cls, "rabbit", "RABBIT_")


def create_logging_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for LoggingSettings (conf/logging.yaml, conf/logging.d/)."""
    return _domain_source(settings_cls, "logging", "LOG_")


def create_outbox_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for OutboxSettings (conf/outbox.yaml, conf/outbox.d/)."""
    return _domain_source(settings_cls, "outbox", "OUTBOX_")


__all__ = [
    "ConfDYamlConfigSettingsSource",
    "create_app_yaml_source",
    "create_db_yaml_source",
    "create_logging_yaml_source",
    "create_outbox_yaml_source",
    "create_rabbit_yaml_source",
]
