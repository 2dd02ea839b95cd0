from __future__ import annotations

import argparse
import subprocess
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .core.config import get_settings
from .core.errors import IngestError
from .core.logging import configure_logging, level_from_name
from .ingest.aspect import FFprobeProbe, classify_geometry
from .ingest.faststart import FFmpegFaststartOptimizer
from .ingest.staging import LocalStagingArea

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    settings = get_settings()
    configure_logging(level=level_from_name(settings.log_level))
    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tubely ingest developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe dependencies")

    subparsers = parser.add_subparsers(dest="command")

    classify_parser = subparsers.add_parser("classify", help="Probe a video and print its aspect class")
    classify_parser.add_argument("--file", required=True, help="Path to the source media file")
    classify_parser.set_defaults(func=_cmd_classify)

    optimize_parser = subparsers.add_parser("optimize", help="Rewrite a video with a fast-start layout")
    optimize_parser.add_argument("--file", required=True, help="Path to the source media file")
    optimize_parser.add_argument("--output", default=None, help="Destination path (defaults to <name>.processed.mp4)")
    optimize_parser.set_defaults(func=_cmd_optimize)

    sweep_parser = subparsers.add_parser("sweep-staging", help="Remove staged files left by crashed runs")
    sweep_parser.add_argument(
        "--older-than",
        type=float,
        default=None,
        help="Age in seconds (defaults to TUBELY_STAGING_SWEEP_AGE_S).",
    )
    sweep_parser.set_defaults(func=_cmd_sweep)
    return parser


def _require_file(raw: str) -> Path:
    media_path = Path(raw).expanduser().resolve()
    if not media_path.exists():
        console.print(f"[red]File not found: {media_path}[/]")
        sys.exit(2)
    return media_path


def _cmd_classify(args: argparse.Namespace) -> None:
    settings = get_settings()
    media_path = _require_file(args.file)
    probe = FFprobeProbe(settings.ffprobe_binary, timeout_s=settings.subprocess_timeout_s)
    try:
        geometry = probe.probe(media_path)
    except IngestError as exc:
        console.print(f"[red]{exc}[/]")
        if exc.diagnostics:
            console.print(exc.diagnostics.strip())
        sys.exit(3)
    aspect = classify_geometry(geometry)
    console.print_json(
        data={"file": str(media_path), "width": geometry.width, "height": geometry.height, "aspect": aspect.value}
    )


def _cmd_optimize(args: argparse.Namespace) -> None:
    settings = get_settings()
    media_path = _require_file(args.file)
    optimizer = FFmpegFaststartOptimizer(settings.ffmpeg_binary, timeout_s=settings.subprocess_timeout_s)
    output = Path(args.output).expanduser().resolve() if args.output else None
    try:
        written = optimizer.optimize(media_path, output)
    except IngestError as exc:
        console.print(f"[red]{exc}[/]")
        if exc.diagnostics:
            console.print(exc.diagnostics.strip())
        sys.exit(3)
    console.print(f"[green]Fast-start copy written to {written}[/]")


def _cmd_sweep(args: argparse.Namespace) -> None:
    settings = get_settings()
    older_than = args.older_than if args.older_than is not None else settings.staging_sweep_age_s
    removed = LocalStagingArea(Path(settings.staging_root)).sweep(older_than_s=older_than)
    console.print(f"Removed {removed} staged file(s) from {settings.staging_root}")


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    settings = get_settings()
    checks = {
        "ffmpeg": [settings.ffmpeg_binary, "-version"],
        "ffprobe": [settings.ffprobe_binary, "-version"],
    }
    results = {}
    for label, cmd in checks.items():
        try:
            subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, check=True)
            results[label] = True
        except (subprocess.CalledProcessError, FileNotFoundError):
            results[label] = False

    console.rule("[bold]Environment Check")
    for label, ok in results.items():
        console.print(f"[bold]{label}[/]: {'✅' if ok else '❌'}")

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Install ffmpeg to enable video ingest.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
