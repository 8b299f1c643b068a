"""Configuration discovery and loading."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from ..storage.state import STATE_FILENAME
from .models import SwitcherConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "credit-switcher.json"


class ConfigLoadError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


@dataclass(frozen=True, slots=True)
class LoadedConfig:
    config: SwitcherConfig
    path: Path | None


def config_search_paths(
    *,
    config_path: Path | None = None,
    worktree: Path | None = None,
    directory: Path | None = None,
    home: Path | None = None,
) -> list[Path]:
    """Return candidate config files, most specific first."""

    paths: list[Path] = []
    if config_path:
        paths.append(Path(config_path))
    if worktree:
        paths.append(Path(worktree) / ".opencode" / CONFIG_FILENAME)
    if directory and directory != worktree:
        paths.append(Path(directory) / ".opencode" / CONFIG_FILENAME)
    if home:
        paths.append(Path(home) / ".config" / "opencode" / CONFIG_FILENAME)
    return paths


def state_path_for(
    config_path: Path | None,
    *,
    worktree: Path | None = None,
    directory: Path | None = None,
    home: Path | None = None,
) -> Path | None:
    """Place the state file beside the config so separate projects stay isolated."""

    if config_path:
        return Path(config_path).parent / STATE_FILENAME
    if worktree:
        return Path(worktree) / ".opencode" / STATE_FILENAME
    if directory:
        return Path(directory) / ".opencode" / STATE_FILENAME
    if home:
        return Path(home) / ".config" / "opencode" / STATE_FILENAME
    return None


class ConfigLoader:
    """Resolves the switcher configuration from an ordered list of candidate files."""

    def __init__(self, search_paths: Iterable[Path]) -> None:
        self._search_paths = [Path(path) for path in search_paths if path]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def existing_path(self) -> Path | None:
        for path in self._search_paths:
            try:
                if path.is_file():
                    return path
            except OSError:
                continue
        return None

    def ensure_default(self) -> Path | None:
        """Write the default config to the first candidate when no config exists."""

        if self.existing_path() is not None or not self._search_paths:
            return None

        target = self._search_paths[0]
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(json.dumps(SwitcherConfig().to_document(), indent=2), encoding="utf-8")
        except OSError as exc:
            logger.error("Failed to create config", extra={"path": str(target), "error": str(exc)})
            return None
        logger.info("Created default config", extra={"path": str(target)})
        return target

    @staticmethod
    def read(path: Path) -> SwitcherConfig:
        try:
            text = path.read_text(encoding="utf-8")
            if path.suffix.lower() in {".yaml", ".yml"}:
                document = yaml.safe_load(text)
            else:
                document = json.loads(text)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
            raise ConfigLoadError(f"Failed to parse config in {path}: {exc}") from exc

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise ConfigLoadError(f"Config in {path} must be an object")

        try:
            return SwitcherConfig.model_validate(document)
        except ValidationError as exc:
            raise ConfigLoadError(f"Config validation error in {path}: {exc}") from exc

    def load(self) -> LoadedConfig:
        """Load the first existing candidate.

        A broken file disables the switcher instead of falling through to the
        next candidate, so a typo never silently activates a different config.
        """

        path = self.existing_path()
        if path is None:
            return LoadedConfig(config=SwitcherConfig.disabled(), path=None)
        try:
            return LoadedConfig(config=self.read(path), path=path)
        except ConfigLoadError as exc:
            logger.error("Failed to load config", extra={"path": str(path), "error": str(exc)})
            return LoadedConfig(config=SwitcherConfig.disabled(), path=path)


__all__ = [
    "CONFIG_FILENAME",
    "ConfigLoadError",
    "ConfigLoader",
    "LoadedConfig",
    "config_search_paths",
    "state_path_for",
]
