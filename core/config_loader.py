"""Loading of manifest and settings documents from TOML, JSON or YAML files."""
from __future__ import annotations

from pathlib import Path
from typing import IO, Any, Callable, Dict, Iterable, List, Mapping, Sequence

import json
import tomllib

try:  # Optional dependency for YAML support
    import yaml
except ModuleNotFoundError:  # pragma: no cover - exercised when PyYAML absent
    yaml = None


ConfigLoader = Callable[[IO[Any]], Any]


def _load_toml(stream: IO[bytes]) -> Any:
    try:
        return tomllib.load(stream)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(str(exc)) from exc


def _load_json(stream: IO[str]) -> Any:
    try:
        return json.load(stream)
    except json.JSONDecodeError as exc:
        raise ValueError(str(exc)) from exc


def _load_yaml(stream: IO[str]) -> Any:
    if yaml is None:
        raise RuntimeError("PyYAML is required to load YAML files. Install with `pip install wixgen[yaml]`.")
    try:
        return yaml.safe_load(stream)
    except yaml.YAMLError as exc:
        raise ValueError(str(exc)) from exc


FILE_LOADERS: Dict[str, ConfigLoader] = {
    ".toml": _load_toml,
    ".json": _load_json,
    ".yaml": _load_yaml,
    ".yml": _load_yaml,
}
"""Document loaders keyed by lower-case file suffix."""

_BINARY_SUFFIXES = frozenset({".toml"})


def load_config_file(path: Path) -> Mapping[str, Any]:
    """Decode the mapping stored in ``path``.

    The suffix selects the format. Parse failures surface as
    :class:`ValueError` naming the file; a document whose root is not a
    table raises :class:`TypeError`.
    """

    suffix = path.suffix.lower()
    if suffix not in FILE_LOADERS:
        supported = ", ".join(sorted(FILE_LOADERS))
        raise ValueError(f"Unsupported file extension: {suffix or '<none>'}. Supported: {supported}")

    if suffix in _BINARY_SUFFIXES:
        stream = path.open("rb")
    else:
        stream = path.open("r", encoding="utf-8")
    with stream:
        try:
            data = FILE_LOADERS[suffix](stream)
        except ValueError as exc:
            raise ValueError(f"Could not parse '{path}': {exc}") from exc

    if not isinstance(data, Mapping):
        raise TypeError(f"File '{path}' must contain a mapping at the root")
    return data


def collect_config_files(directory: Path, *, suffixes: Iterable[str] | None = None) -> Dict[str, Path]:
    """Map file stems in ``directory`` to the loadable document carrying that stem.

    Two documents sharing a stem (``config.toml`` next to ``config.json``)
    are ambiguous and rejected.
    """

    allowed = {suffix.lower() for suffix in suffixes} if suffixes else set(FILE_LOADERS)
    candidates = [path for path in sorted(directory.iterdir()) if path.is_file() and path.suffix.lower() in allowed]

    files: Dict[str, Path] = {}
    for path in candidates:
        previous = files.setdefault(path.stem, path)
        if previous is not path:
            raise ValueError(
                f"Multiple configuration files found for '{path.stem}': "
                f"'{previous.name}' and '{path.name}'. Keep a single format per name."
            )
    return files


def merge_mappings(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Return ``base`` with ``overlay`` laid on top; nested tables merge key by key."""

    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        both_tables = isinstance(current, Mapping) and isinstance(value, Mapping)
        merged[key] = merge_mappings(current, value) if both_tables else value
    return merged


def _clean(item: Any, label: str) -> str:
    if not isinstance(item, (str, bytes)):
        raise TypeError(f"{label}entries must be strings")
    return str(item).strip()


def normalize_string_list(value: Any, *, field_name: str | None = None) -> List[str]:
    """Accept a single string or a list of strings and drop blank entries."""

    label = f"{field_name} " if field_name else ""
    if value is None:
        return []
    if isinstance(value, (str, bytes)):
        items: Sequence[Any] = [value]
    elif isinstance(value, Sequence):
        items = value
    else:
        raise TypeError(f"{label}must be a string or sequence of strings")
    return [text for text in (_clean(item, label) for item in items) if text]


def resolve_config_paths(root: Path, directories: Iterable[Path]) -> tuple[tuple[Path, ...], tuple[Path, ...]]:
    """Split ``directories`` into those that exist and those that do not.

    Relative entries are anchored at ``root``. A directory named more than
    once keeps its last position only.
    """

    ordered: Dict[Path, None] = {}
    for raw in directories:
        path = raw if raw.is_absolute() else (root / raw).resolve()
        ordered.pop(path, None)
        ordered[path] = None

    existing = tuple(path for path in ordered if path.is_dir())
    missing = tuple(path for path in ordered if not path.is_dir())
    return existing, missing


__all__ = [
    "ConfigLoader",
    "FILE_LOADERS",
    "collect_config_files",
    "load_config_file",
    "merge_mappings",
    "normalize_string_list",
    "resolve_config_paths",
]
