"""Platform selection and version expansion."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping
import re

from core.template import TemplateError, TemplateResolver

from .errors import MalformedVersionError, UnsupportedPlatformError


class Platform(str, Enum):
    X86 = "x86"
    X64 = "x64"


_PLATFORM_ALIASES: dict[str, Platform] = {
    "x86": Platform.X86,
    "32": Platform.X86,
    "32-bit": Platform.X86,
    "i386": Platform.X86,
    "i686": Platform.X86,
    "win32": Platform.X86,
    "x64": Platform.X64,
    "64": Platform.X64,
    "64-bit": Platform.X64,
    "amd64": Platform.X64,
    "x86_64": Platform.X64,
    "win64": Platform.X64,
}

# Windows Installer ProductVersion limits: major.minor.build (revision is ignored).
_VERSION_LIMITS = (255, 255, 65535, 65535)
_VERSION_PATTERN = re.compile(r"^(\d+)(?:\.(\d+))?(?:\.(\d+))?(?:\.(\d+))?$")


@dataclass(frozen=True, slots=True)
class PlatformVariable:
    name: str
    value: Any
    condition: str


@dataclass(frozen=True, slots=True)
class ResolvedPlatform:
    platform: Platform
    win64: bool
    program_files: str
    arch: str

    @property
    def variables(self) -> tuple[PlatformVariable, ...]:
        condition = f"Platform = {self.platform.value}"
        return (
            PlatformVariable("Win64", "yes" if self.win64 else "no", condition),
            PlatformVariable("PlatformProgramFilesFolder", self.program_files, condition),
        )

    def to_mapping(self) -> dict[str, Any]:
        return {
            "name": self.platform.value,
            "win64": self.win64,
            "program_files": self.program_files,
            "arch": self.arch,
        }


def parse_platform(selector: str | Platform | None) -> Platform:
    """Map a user supplied selector onto the closed :class:`Platform` set.

    An unspecified selector means the default 32-bit target.
    """

    if selector is None:
        return Platform.X86
    if isinstance(selector, Platform):
        return selector
    text = str(selector).strip().lower()
    if not text:
        return Platform.X86
    platform = _PLATFORM_ALIASES.get(text)
    if platform is None:
        supported = ", ".join(member.value for member in Platform)
        raise UnsupportedPlatformError(
            f"Unsupported platform '{selector}'. Supported: {supported}",
            identifier=str(selector),
        )
    return platform


def resolve_platform(selector: str | Platform | None) -> ResolvedPlatform:
    platform = parse_platform(selector)
    match platform:
        case Platform.X64:
            return ResolvedPlatform(platform, True, "ProgramFiles64Folder", "x64")
        case Platform.X86:
            return ResolvedPlatform(platform, False, "ProgramFilesFolder", "x86")


def normalize_version(text: str) -> str:
    """Validate ``text`` as an installer version and return it without build metadata.

    SemVer pre-release and build suffixes (``1.2.3-beta.1+abc``) are dropped
    because the installer engine compares numeric fields only.
    """

    candidate = text.strip()
    if candidate[:1] in {"v", "V"}:
        candidate = candidate[1:]
    candidate = re.split(r"[-+]", candidate, maxsplit=1)[0]
    match = _VERSION_PATTERN.match(candidate)
    if not match:
        raise MalformedVersionError(f"Version '{text}' is not of the form major.minor.build", identifier=text)
    fields = [int(part) for part in match.groups() if part is not None]
    if len(fields) < 3:
        fields.extend([0] * (3 - len(fields)))
    for value, limit in zip(fields, _VERSION_LIMITS):
        if value > limit:
            raise MalformedVersionError(
                f"Version '{text}' field {value} exceeds the installer limit of {limit}",
                identifier=text,
            )
    return ".".join(str(value) for value in fields)


def expand_version(template: Any, context: Mapping[str, Any]) -> str:
    if template is None or str(template).strip() == "":
        raise MalformedVersionError("Product version is empty", identifier="product.version")
    try:
        expanded = TemplateResolver(context).resolve(str(template))
    except TemplateError as exc:
        raise MalformedVersionError(f"Version template '{template}': {exc}", identifier=str(template)) from exc
    return normalize_version(str(expanded))


__all__ = [
    "Platform",
    "PlatformVariable",
    "ResolvedPlatform",
    "expand_version",
    "normalize_version",
    "parse_platform",
    "resolve_platform",
]
