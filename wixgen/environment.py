"""Build inputs and the template context built from them."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping
import os

from .platforms import ResolvedPlatform


@dataclass(frozen=True, slots=True)
class BuildInputs:
    """Values injected from outside the manifest for one compilation."""

    platform: str | None = None
    version: str | None = None
    binary: Path | None = None
    icon: Path | None = None
    license: Path | None = None
    banner: Path | None = None
    dialog: Path | None = None
    profile: str = "release"

    def assets(self) -> Dict[str, str]:
        data: Dict[str, str] = {}
        optional = {
            "icon": self.icon,
            "license": self.license,
            "banner": self.banner,
            "dialog": self.dialog,
        }
        for key, value in optional.items():
            if value is not None:
                data[key] = str(value)
        return data


class ContextBuilder:
    """Builds the variable context for templating and expressions."""

    def __init__(self, inputs: BuildInputs, env: Mapping[str, str] | None = None) -> None:
        self._inputs = inputs
        self._env = dict(env) if env is not None else dict(os.environ)

    def build(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"profile": self._inputs.profile}
        if self._inputs.version is not None:
            data["version"] = self._inputs.version
        if self._inputs.binary is not None:
            data["binary"] = str(self._inputs.binary)
        return data

    def combined_context(
        self,
        *,
        platform: ResolvedPlatform,
        assets: Mapping[str, Any] | None = None,
    ) -> Dict[str, Any]:
        merged_assets = dict(assets or {})
        merged_assets.update(self._inputs.assets())
        return {
            "platform": platform.to_mapping(),
            "build": self.build(),
            "assets": merged_assets,
            "env": dict(self._env),
        }


__all__ = ["BuildInputs", "ContextBuilder"]
