"""Shared core utilities for configuration, templating and command execution."""

from .command_runner import (
    CommandError,
    CommandResult,
    CommandRunner,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)
from .config_loader import (
    ConfigLoader,
    FILE_LOADERS,
    collect_config_files,
    load_config_file,
    merge_mappings,
    normalize_string_list,
    resolve_config_paths,
)
from .ordering import CycleError, find_cycle, topological_order
from .template import (
    TemplateError,
    TemplateResolver,
    build_dependency_map,
    extract_placeholders,
    resolve_variable_table,
)

__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "ConfigLoader",
    "FILE_LOADERS",
    "collect_config_files",
    "load_config_file",
    "merge_mappings",
    "normalize_string_list",
    "resolve_config_paths",
    "CycleError",
    "find_cycle",
    "topological_order",
    "TemplateError",
    "TemplateResolver",
    "build_dependency_map",
    "extract_placeholders",
    "resolve_variable_table",
]
