"""Planning and execution of the external WiX toolset run."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence
import json

from core.command_runner import CommandRunner

from .compiler import InstallerDescription, serialize
from .settings import ToolSettings
from .wxs import render_wxs


@dataclass(slots=True)
class BuildStep:
    description: str
    command: Sequence[str]
    cwd: Path


@dataclass(slots=True)
class BuildPlan:
    description: InstallerDescription
    output_dir: Path
    wxs_path: Path
    json_path: Path
    object_path: Path
    msi_path: Path
    steps: List[BuildStep] = field(default_factory=list)

    @property
    def stem(self) -> str:
        return self.msi_path.stem


def output_stem(description: InstallerDescription) -> str:
    """``<name>-<version>-<arch>`` with spaces removed from the product name."""

    name = "".join(description.product.name.split())
    return f"{name}-{description.product.version}-{description.platform.arch}"


class BuildEngine:
    def __init__(
        self,
        *,
        settings: ToolSettings,
        command_runner: CommandRunner,
        workspace: Path,
    ) -> None:
        self._settings = settings
        self._command_runner = command_runner
        self._workspace = workspace

    def plan(self, description: InstallerDescription, *, output_dir: Path | None = None) -> BuildPlan:
        base = Path(output_dir) if output_dir is not None else Path(self._settings.output_dir)
        if not base.is_absolute():
            base = self._workspace / base
        target_dir = base / description.profile
        stem = output_stem(description)

        plan = BuildPlan(
            description=description,
            output_dir=target_dir,
            wxs_path=target_dir / f"{stem}.wxs",
            json_path=target_dir / f"{stem}.json",
            object_path=target_dir / f"{stem}.wixobj",
            msi_path=target_dir / f"{stem}.msi",
        )
        plan.steps.append(
            BuildStep(
                description="Compile WiX source",
                command=[
                    self._settings.candle,
                    "-nologo",
                    "-arch",
                    description.platform.arch,
                    *self._extension_args(),
                    "-out",
                    str(plan.object_path),
                    str(plan.wxs_path),
                ],
                cwd=self._workspace,
            )
        )
        cultures = ";".join(self._settings.cultures)
        link_command = [self._settings.light, "-nologo", *self._extension_args()]
        if cultures:
            link_command.append(f"-cultures:{cultures}")
        link_command.extend(["-out", str(plan.msi_path), str(plan.object_path)])
        plan.steps.append(BuildStep(description="Link installer package", command=link_command, cwd=self._workspace))
        return plan

    def _extension_args(self) -> List[str]:
        args: List[str] = []
        for extension in self._settings.extensions:
            args.extend(["-ext", extension])
        return args

    def execute(self, plan: BuildPlan, *, dry_run: bool = False) -> None:
        """Write the generated sources and run every step in order.

        With ``dry_run`` nothing is written; the runner is expected to be a
        recording runner.
        """

        if not dry_run:
            plan.output_dir.mkdir(parents=True, exist_ok=True)
            plan.json_path.write_text(serialize(plan.description), encoding="utf-8")
            plan.wxs_path.write_text(render_wxs(plan.description), encoding="utf-8")
        for step in plan.steps:
            self._command_runner.run(step.command, cwd=step.cwd, note=step.description, stream=not dry_run)


def serialize_plan(plan: BuildPlan) -> str:
    payload: Dict[str, Any] = {
        "output_dir": str(plan.output_dir),
        "wxs": str(plan.wxs_path),
        "json": str(plan.json_path),
        "msi": str(plan.msi_path),
        "steps": [
            {"description": step.description, "command": list(step.command), "cwd": str(step.cwd)}
            for step in plan.steps
        ],
    }
    return json.dumps(payload, indent=2)


__all__ = ["BuildEngine", "BuildPlan", "BuildStep", "output_stem", "serialize_plan"]
