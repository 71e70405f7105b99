"""Running external toolchain programs, or recording them for a dry run."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Sequence
import shlex
import subprocess


MISSING_PROGRAM_EXIT = 127


def quote_command(command: Sequence[str]) -> str:
    return shlex.join(str(part) for part in command)


@dataclass
class CommandResult:
    """Exit status and captured output of one program run."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandError(RuntimeError):
    """A program exited non-zero or could not be started."""

    def __init__(self, result: CommandResult):
        lines = [f"Command failed with exit code {result.returncode}: {quote_command(result.command)}"]
        if result.returncode == MISSING_PROGRAM_EXIT and not result.stdout:
            lines.append(result.stderr or "program not found")
        elif result.streamed:
            lines.append("stdout/stderr already streamed above.")
        else:
            lines.extend([f"stdout: {result.stdout}", f"stderr: {result.stderr}"])
        super().__init__("\n".join(lines))
        self.result = result


class CommandRunner:
    """Interface shared by the real and the recording runner."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return quote_command(command)


class SubprocessCommandRunner(CommandRunner):
    """Runs programs with :func:`subprocess.run`.

    With ``stream`` the program writes straight to the terminal instead of
    being captured.
    """

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        try:
            completed = subprocess.run(
                [str(part) for part in command],
                cwd=cwd,
                capture_output=not stream,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            result = CommandResult(command=command, returncode=MISSING_PROGRAM_EXIT, stdout="", stderr=str(exc))
        else:
            result = CommandResult(
                command=command,
                returncode=completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
                streamed=stream,
            )

        if check and not result.ok:
            raise CommandError(result)
        return result


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    note: str | None = None


class RecordingCommandRunner(CommandRunner):
    """Keeps every requested command in :attr:`commands` and reports success."""

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        note: str | None = None,
        stream: bool = False,
    ) -> CommandResult:
        record = RecordedCommand(
            command=[str(part) for part in command],
            cwd=str(cwd) if cwd is not None else None,
            note=note,
        )
        self.commands.append(record)
        return CommandResult(command=record.command, returncode=0, stdout="", stderr="")

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        """Yield ``[dry-run] <note> (cwd=...) <command>`` lines in call order."""

        for record in self.commands:
            cwd = record.cwd or (str(workspace) if workspace is not None else None)
            pieces = ["[dry-run]", record.note, f"(cwd={cwd})" if cwd else None, self.format_command(record.command)]
            yield " ".join(piece for piece in pieces if piece)


__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
    "quote_command",
]
