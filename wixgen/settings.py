"""Tool settings discovered in configuration directories."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping
import os

from core.config_loader import (
    collect_config_files,
    load_config_file,
    merge_mappings,
    normalize_string_list,
    resolve_config_paths,
)


CONFIG_DIR_ENV = "WIXGEN_CONFIG_DIR"
DEFAULT_EXTENSIONS = ("WixUIExtension",)
DEFAULT_CULTURES = ("en-us",)


@dataclass(slots=True)
class ToolSettings:
    default_platform: str | None = None
    default_profile: str = "release"
    output_dir: str = "dist"
    candle: str = "candle"
    light: str = "light"
    extensions: List[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    cultures: List[str] = field(default_factory=lambda: list(DEFAULT_CULTURES))
    config_dirs: tuple[Path, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], *, config_dirs: Iterable[Path] = ()) -> "ToolSettings":
        section = data.get("global", {}) if isinstance(data, Mapping) else {}
        if not isinstance(section, Mapping):
            raise ValueError("[global] in config must be a table")
        platform = section.get("default_platform")
        extensions = section.get("extensions")
        cultures = section.get("cultures")
        return cls(
            default_platform=str(platform) if platform else None,
            default_profile=str(section.get("default_profile", "release")),
            output_dir=str(section.get("output_dir", "dist")),
            candle=str(section.get("candle", "candle")),
            light=str(section.get("light", "light")),
            extensions=(
                normalize_string_list(extensions, field_name="global.extensions")
                if extensions is not None
                else list(DEFAULT_EXTENSIONS)
            ),
            cultures=(
                normalize_string_list(cultures, field_name="global.cultures")
                if cultures is not None
                else list(DEFAULT_CULTURES)
            ),
            config_dirs=tuple(config_dirs),
        )

    @classmethod
    def from_directories(cls, root: Path, directories: Iterable[Path]) -> "ToolSettings":
        """Merge every ``config.*`` file found in ``directories``, later ones winning.

        Missing directories are skipped; without any configuration the
        defaults apply.
        """

        resolved_dirs, _ = resolve_config_paths(root, directories)
        data: Mapping[str, Any] = {}
        for config_dir in resolved_dirs:
            path = collect_config_files(config_dir).get("config")
            if path is not None:
                data = merge_mappings(data, load_config_file(path))
        return cls.from_mapping(data, config_dirs=resolved_dirs)


def split_config_values(values: Iterable[str]) -> List[str]:
    parts: List[str] = []
    for value in values:
        if not value:
            continue
        for segment in value.split(os.pathsep):
            trimmed = segment.strip()
            if trimmed:
                parts.append(trimmed)
    return parts


def resolve_config_directories(
    workspace: Path,
    cli_values: Iterable[str],
    *,
    env: Mapping[str, str] | None = None,
) -> List[Path]:
    """Return config directories: ``<workspace>/config``, then the env var, then ``-C`` values."""

    environment = os.environ if env is None else env
    entries: List[str] = []
    env_value = environment.get(CONFIG_DIR_ENV)
    if env_value:
        entries.extend(split_config_values([env_value]))
    entries.extend(split_config_values(cli_values))

    config_dirs: List[Path] = [workspace / "config"]
    for entry in entries:
        path = Path(entry)
        if not path.is_absolute():
            path = workspace / path
        config_dirs.append(path)

    ordered: List[Path] = []
    for path in config_dirs:
        if path in ordered:
            ordered.remove(path)
        ordered.append(path)
    return ordered


__all__ = ["CONFIG_DIR_ENV", "ToolSettings", "resolve_config_directories", "split_config_values"]
