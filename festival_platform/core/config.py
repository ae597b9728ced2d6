from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from festival_platform.core.renumber.engine import DEFAULT_BACKUP_DIR, RenumberOptions


CONFIG_FILE_NAME = "fest.yaml"

DEFAULT_CONFIG: dict[str, dict[str, Any]] = {
    "renumber": {
        "backup": False,
        "backup_dir": DEFAULT_BACKUP_DIR,
        "journal": True,
        "verbose": False,
    },
    "deps": {
        "implicit": True,
    },
}

_TYPES: dict[str, dict[str, type]] = {
    "renumber": {"backup": bool, "backup_dir": str, "journal": bool, "verbose": bool},
    "deps": {"implicit": bool},
}


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class FestConfig:
    renumber: RenumberOptions
    implicit_dependencies: bool = True

    def with_overrides(
        self,
        *,
        dry_run: Optional[bool] = None,
        verbose: Optional[bool] = None,
        backup: Optional[bool] = None,
    ) -> FestConfig:
        """Return a copy with CLI flags applied; None leaves the configured value."""
        opts = self.renumber
        if dry_run is not None:
            opts = replace(opts, dry_run=dry_run)
        if verbose:
            opts = replace(opts, verbose=True)
        if backup is not None:
            opts = replace(opts, backup=backup)
        return replace(self, renumber=opts)


def load_config_file(path: str | Path) -> dict[str, dict[str, Any]]:
    """Load a fest.yaml file.

    Format:
      renumber: {backup: bool, backup_dir: str, journal: bool, verbose: bool}
      deps: {implicit: bool}

    Returns only the keys present in the file.
    """
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML: {e}") from e
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError("config file must be a mapping of section -> settings")

    out: dict[str, dict[str, Any]] = {}
    for section, values in raw.items():
        if section not in _TYPES:
            raise ConfigError(f"unknown config section '{section}'")
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ConfigError(f"config section '{section}' must be a mapping")
        for key, value in values.items():
            if key not in _TYPES[section]:
                raise ConfigError(f"unknown setting '{section}.{key}'")
            if not isinstance(value, _TYPES[section][key]):
                raise ConfigError(
                    f"setting '{section}.{key}' must be of type {_TYPES[section][key].__name__}"
                )
        out[section] = dict(values)
    return out


def merged_config(overrides: dict[str, dict[str, Any]] | None = None) -> dict[str, dict[str, Any]]:
    """Return DEFAULT_CONFIG merged with optional overrides, setting by setting."""
    merged = {section: dict(values) for section, values in DEFAULT_CONFIG.items()}
    if overrides:
        for section, values in overrides.items():
            merged.setdefault(section, {}).update(values)
    return merged


def load_config(
    festival_dir: str | Path | None = None,
    config_file: str | None = None,
) -> FestConfig:
    """Resolve configuration: explicit --config file, else <festival>/fest.yaml, else defaults."""
    path: Optional[Path] = None
    if config_file:
        path = Path(config_file)
        if not path.exists():
            raise FileNotFoundError(config_file)
    elif festival_dir is not None and (Path(festival_dir) / CONFIG_FILE_NAME).is_file():
        path = Path(festival_dir) / CONFIG_FILE_NAME

    merged = merged_config(load_config_file(path) if path else None)
    r = merged["renumber"]
    return FestConfig(
        renumber=RenumberOptions(
            backup=r["backup"],
            backup_dir=r["backup_dir"],
            journal=r["journal"],
            verbose=r["verbose"],
        ),
        implicit_dependencies=merged["deps"]["implicit"],
    )
