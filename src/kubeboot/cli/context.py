"""Lazy configuration for subcommands.

The group callback only records the flags. Each subcommand builds the
configuration it needs, so an invalid setting does not block commands that
never read it.
"""

from pathlib import Path
from typing import Any, Dict

import click
import yaml

from kubeboot.config import DEFAULT_CONFIG_PATH, BootstrapConfig, ConfigManager
from kubeboot.errors import ConfigError
from kubeboot.logging_config import configure_logging


def raw_config(ctx: click.Context) -> Dict[str, Any]:
    """Merged configuration mapping, before validation"""
    obj = ctx.find_root().obj
    if "raw_config" not in obj:
        manager = ConfigManager(obj.get("config_path") or DEFAULT_CONFIG_PATH)
        try:
            obj["raw_config"] = manager.load(obj.get("overrides"))
        except yaml.YAMLError as e:
            raise click.UsageError(f"Invalid configuration: {e}")
    return obj["raw_config"]


def get_config(ctx: click.Context) -> BootstrapConfig:
    """Validated configuration; also applies its logging level"""
    obj = ctx.find_root().obj
    if "config" not in obj:
        try:
            config = BootstrapConfig.from_mapping(raw_config(ctx))
        except ConfigError as e:
            raise click.UsageError(f"Invalid configuration: {e}")
        configure_logging("debug" if obj.get("verbose") else config.log_level)
        obj["config"] = config
    return obj["config"]


def state_dir(ctx: click.Context) -> Path:
    """State directory, readable even when other settings are invalid"""
    return Path(raw_config(ctx)["state_dir"]).expanduser()
