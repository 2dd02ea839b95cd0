from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Protocol, Sequence

from tubely.core.errors import OptimizationFailure, output_text
from tubely.core.logging import get_logger

PROCESSED_SUFFIX = ".processed"


class StreamOptimizer(Protocol):
    def output_path(self, source: Path) -> Path: ...

    def optimize(self, source: Path, output: Path | None = None) -> Path: ...


def processed_path(source: Path) -> Path:
    """``clip.abc.mp4`` becomes ``clip.abc.processed.mp4`` next to the source."""
    return source.with_name(f"{source.stem}{PROCESSED_SUFFIX}{source.suffix or '.mp4'}")


class FFmpegFaststartOptimizer:
    """Moves the MP4 index ahead of the payload without re-encoding.

    Audio and video are stream-copied and global metadata is carried over, so
    the output differs from the input only in atom layout.
    """

    def __init__(self, binary: str = "ffmpeg", *, timeout_s: float | None = None):
        self.binary = binary
        self.timeout_s = timeout_s
        self.logger = get_logger(component="ffmpeg_faststart")

    def output_path(self, source: Path) -> Path:
        return processed_path(source)

    def command(self, source: Path, output: Path) -> Sequence[str]:
        return [
            self.binary,
            "-nostdin",
            "-v",
            "error",
            "-y",
            "-i",
            str(source),
            "-movflags",
            "faststart",
            "-map_metadata",
            "0",
            "-codec",
            "copy",
            "-f",
            "mp4",
            str(output),
        ]

    def optimize(self, source: Path, output: Path | None = None) -> Path:
        target = output or self.output_path(source)
        if target.resolve() == source.resolve():
            raise ValueError("faststart output must not overwrite the source file")
        try:
            subprocess.run(
                self.command(source, target),
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.CalledProcessError as exc:
            self.logger.error("ffmpeg_faststart_failed", source=str(source), returncode=exc.returncode, stderr=exc.stderr)
            raise OptimizationFailure(f"ffmpeg exited with {exc.returncode}", diagnostics=exc.stderr) from exc
        except subprocess.TimeoutExpired as exc:
            self.logger.error("ffmpeg_faststart_timeout", source=str(source), timeout_s=self.timeout_s)
            raise OptimizationFailure("ffmpeg timed out", diagnostics=output_text(exc.stderr)) from exc
        except FileNotFoundError as exc:
            raise OptimizationFailure(f"{self.binary} is not installed", diagnostics=str(exc)) from exc
        return target


__all__ = ["StreamOptimizer", "FFmpegFaststartOptimizer", "processed_path", "PROCESSED_SUFFIX"]
