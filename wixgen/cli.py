"""Command line interface for the installer manifest compiler."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, Mapping
import os
import sys

from core.command_runner import CommandError, RecordingCommandRunner, SubprocessCommandRunner

from .build import BuildEngine, serialize_plan
from .compiler import InstallerDescription, apply_profile, build_context, compile_manifest, load_manifest, serialize
from .environment import BuildInputs
from .errors import CompileError
from .settings import ToolSettings, resolve_config_directories
from .upgrade import check_upgrade, load_previous
from .wxs import render_wxs


def _make_runner(dry_run: bool) -> SubprocessCommandRunner | RecordingCommandRunner:
    return RecordingCommandRunner() if dry_run else SubprocessCommandRunner()


def _emit_dry_run_output(runner: RecordingCommandRunner, *, workspace: Path) -> None:
    for line in runner.iter_formatted(workspace=workspace):
        print(line)


def _add_input_arguments(parser: ArgumentParser) -> None:
    parser.add_argument("manifest", type=Path, help="Path to the installer manifest (.toml, .json or .yaml)")
    parser.add_argument("-P", "--platform", help="Target platform (x86 or x64); defaults to $WIXGEN_PLATFORM")
    parser.add_argument("-V", "--version", dest="product_version", help="Product version; defaults to $WIXGEN_VERSION")
    parser.add_argument("-p", "--profile", help="Build profile overlay; defaults to $WIXGEN_PROFILE")
    parser.add_argument("--binary", type=Path, help="Path of the application binary being packaged")
    parser.add_argument("--icon", type=Path, help="Product icon asset")
    parser.add_argument("--license", type=Path, help="License text asset (RTF)")
    parser.add_argument("--banner", type=Path, help="Installer banner bitmap")
    parser.add_argument("--dialog", type=Path, help="Installer dialog background bitmap")


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="wixgen", description="Declarative Windows installer manifest compiler")
    parser.add_argument(
        "-C",
        "--config-dir",
        dest="config_dirs",
        action="append",
        default=[],
        metavar="PATH",
        help="Additional configuration directory (repeat or separate with PATH separator)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    compile_parser = subparsers.add_parser("compile", help="Compile a manifest into an installer description")
    _add_input_arguments(compile_parser)
    compile_parser.add_argument("-o", "--output", type=Path, help="Write the JSON description here instead of stdout")
    compile_parser.add_argument("--wxs", type=Path, help="Also write WiX source to this path")
    compile_parser.add_argument("--previous", type=Path, help="Previously shipped description to check upgrades against")
    compile_parser.add_argument("--show-vars", action="store_true", help="Display resolved variables before compiling")

    validate_parser = subparsers.add_parser("validate", help="Check a manifest without writing anything")
    _add_input_arguments(validate_parser)
    validate_parser.add_argument("--previous", type=Path, help="Previously shipped description to check upgrades against")

    build_parser = subparsers.add_parser("build", help="Compile a manifest and run the WiX toolset")
    _add_input_arguments(build_parser)
    build_parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")
    build_parser.add_argument("-O", "--output-dir", type=Path, help="Override the configured output directory")
    build_parser.add_argument("--previous", type=Path, help="Previously shipped description to check upgrades against")
    build_parser.add_argument("--verbose", action="store_true", help="Print the build plan before running it")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    workspace = Path.cwd()

    if args.command == "compile":
        return _handle_compile(args, workspace)
    if args.command == "validate":
        return _handle_validate(args, workspace)
    if args.command == "build":
        return _handle_build(args, workspace)
    raise ValueError(f"Unknown command: {args.command}")


def _load_settings(args: Namespace, workspace: Path) -> ToolSettings:
    directories = resolve_config_directories(workspace, getattr(args, "config_dirs", []))
    return ToolSettings.from_directories(workspace, directories)


def _build_inputs(args: Namespace, settings: ToolSettings, env: Mapping[str, str]) -> BuildInputs:
    return BuildInputs(
        platform=args.platform or env.get("WIXGEN_PLATFORM") or settings.default_platform,
        version=args.product_version or env.get("WIXGEN_VERSION"),
        binary=args.binary,
        icon=args.icon,
        license=args.license,
        banner=args.banner,
        dialog=args.dialog,
        profile=args.profile or env.get("WIXGEN_PROFILE") or settings.default_profile,
    )


def _prepare(args: Namespace, workspace: Path) -> tuple[ToolSettings, Mapping, BuildInputs] | None:
    env = dict(os.environ)
    try:
        settings = _load_settings(args, workspace)
        manifest = load_manifest(args.manifest)
    except (OSError, RuntimeError, TypeError, ValueError) as exc:
        print(f"Error: {exc}")
        return None
    return settings, manifest, _build_inputs(args, settings, env)


def _compile(args: Namespace, manifest: Mapping, inputs: BuildInputs) -> InstallerDescription:
    description = compile_manifest(manifest, inputs, env=dict(os.environ))
    if getattr(args, "previous", None) is not None:
        check_upgrade(load_previous(args.previous), description)
    return description


def _format_error(exc: CompileError) -> str:
    return f"[{exc.kind}] {exc}"


def _handle_compile(args: Namespace, workspace: Path) -> int:
    prepared = _prepare(args, workspace)
    if prepared is None:
        return 2
    _, manifest, inputs = prepared

    try:
        if args.show_vars:
            from pprint import pprint

            _, context = build_context(apply_profile(manifest, inputs.profile), inputs, env=dict(os.environ))
            context.pop("env", None)
            print("Resolved variables:")
            pprint(context)
        description = _compile(args, manifest, inputs)
    except CompileError as exc:
        print(f"Error: {_format_error(exc)}")
        return 1

    document = serialize(description)
    if args.output is None:
        sys.stdout.write(document)
    else:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(document, encoding="utf-8")
    if args.wxs is not None:
        args.wxs.parent.mkdir(parents=True, exist_ok=True)
        args.wxs.write_text(render_wxs(description), encoding="utf-8")
    if args.output is not None:
        print(f"Compilation successful: {args.output}")
    return 0


def _handle_validate(args: Namespace, workspace: Path) -> int:
    prepared = _prepare(args, workspace)
    if prepared is None:
        return 2
    _, manifest, inputs = prepared

    try:
        _compile(args, manifest, inputs)
    except CompileError as exc:
        print("Validation failed:")
        print(f"  {_format_error(exc)}")
        return 1
    print("Validation successful")
    return 0


def _handle_build(args: Namespace, workspace: Path) -> int:
    prepared = _prepare(args, workspace)
    if prepared is None:
        return 2
    settings, manifest, inputs = prepared

    try:
        description = _compile(args, manifest, inputs)
    except CompileError as exc:
        print(f"Error: {_format_error(exc)}")
        return 1

    runner = _make_runner(args.dry_run)
    engine = BuildEngine(settings=settings, command_runner=runner, workspace=workspace)
    plan = engine.plan(description, output_dir=args.output_dir)
    if args.verbose:
        print(serialize_plan(plan))

    try:
        engine.execute(plan, dry_run=args.dry_run)
    except CommandError as exc:
        print(f"Error: {exc}")
        return 1

    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        _emit_dry_run_output(runner, workspace=workspace)
    else:
        print(f"Built {plan.msi_path}")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
