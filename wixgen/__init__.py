"""Declarative Windows installer manifest compiler."""
from __future__ import annotations

from .compiler import InstallerDescription, compile_manifest, load_manifest, serialize
from .environment import BuildInputs
from .errors import CompileError
from .wxs import render_wxs


def main(argv=None) -> int:
    from .cli import main as _main

    return _main(argv)


__all__ = [
    "BuildInputs",
    "CompileError",
    "InstallerDescription",
    "compile_manifest",
    "load_manifest",
    "main",
    "render_wxs",
    "serialize",
]
