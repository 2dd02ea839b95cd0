from __future__ import annotations

import enum
import json
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence

from tubely.core.errors import InvalidMediaMetadata, ProbeFailure, output_text
from tubely.core.logging import get_logger

LANDSCAPE_RATIO = 16 / 9
PORTRAIT_RATIO = 9 / 16
RATIO_TOLERANCE = 0.1


class AspectClass(str, enum.Enum):
    landscape = "landscape"
    portrait = "portrait"
    other = "other"


@dataclass(slots=True, frozen=True)
class Geometry:
    """Frame size of the first video stream."""

    width: int
    height: int

    @property
    def ratio(self) -> float:
        return self.width / self.height


class MediaProbe(Protocol):
    def probe(self, path: Path) -> Geometry: ...


def classify_geometry(geometry: Geometry) -> AspectClass:
    """Classify a frame size as landscape, portrait or other.

    Args:
        geometry: The frame size to classify.

    Returns:
        ``landscape`` within the tolerance of 16:9, ``portrait`` within the
        tolerance of 9:16, ``other`` for everything else.
    """
    ratio = geometry.ratio
    if abs(ratio - LANDSCAPE_RATIO) < RATIO_TOLERANCE:
        return AspectClass.landscape
    if abs(ratio - PORTRAIT_RATIO) < RATIO_TOLERANCE:
        return AspectClass.portrait
    return AspectClass.other


def parse_probe_output(stdout: str) -> Geometry:
    """Validate ffprobe's JSON output and extract the first stream's frame size.

    Args:
        stdout: Raw ffprobe stdout, requested with ``-of json``.

    Returns:
        The geometry of ``streams[0]``.

    Raises:
        InvalidMediaMetadata: The payload is not JSON, has no streams, or the
            first stream lacks a positive integer width and height.
    """
    try:
        raw = json.loads(stdout)
    except (TypeError, ValueError) as exc:
        raise InvalidMediaMetadata("ffprobe output is not valid JSON", diagnostics=str(stdout)[:500]) from exc
    if not isinstance(raw, dict):
        raise InvalidMediaMetadata("ffprobe output is not a JSON object")

    streams = raw.get("streams")
    if not isinstance(streams, list) or not streams or not isinstance(streams[0], dict):
        raise InvalidMediaMetadata("no video stream found")

    stream: Dict[str, Any] = streams[0]
    width = _positive_int_or_none(stream.get("width"))
    height = _positive_int_or_none(stream.get("height"))
    if width is None or height is None:
        raise InvalidMediaMetadata("video stream is missing width or height")
    return Geometry(width=width, height=height)


def _positive_int_or_none(value: Any) -> Optional[int]:
    if isinstance(value, bool) or value in (None, "N/A", ""):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


class FFprobeProbe:
    """Reads the first video stream's frame size with ffprobe."""

    def __init__(self, binary: str = "ffprobe", *, timeout_s: float | None = None):
        self.binary = binary
        self.timeout_s = timeout_s
        self.logger = get_logger(component="ffprobe")

    def command(self, target: Path) -> Sequence[str]:
        return [
            self.binary,
            "-v",
            "error",
            "-select_streams",
            "v:0",
            "-show_entries",
            "stream=width,height",
            "-of",
            "json",
            str(target),
        ]

    def probe(self, path: Path) -> Geometry:
        command = self.command(path)
        try:
            proc = subprocess.run(
                command,
                check=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.CalledProcessError as exc:
            self.logger.error("ffprobe_failed", path=str(path), returncode=exc.returncode, stderr=exc.stderr)
            raise ProbeFailure(f"ffprobe exited with {exc.returncode}", diagnostics=exc.stderr) from exc
        except subprocess.TimeoutExpired as exc:
            self.logger.error("ffprobe_timeout", path=str(path), timeout_s=self.timeout_s)
            raise ProbeFailure("ffprobe timed out", diagnostics=output_text(exc.stderr)) from exc
        except FileNotFoundError as exc:
            raise ProbeFailure(f"{self.binary} is not installed", diagnostics=str(exc)) from exc

        geometry = parse_probe_output(proc.stdout)
        self.logger.debug("ffprobe_geometry", path=str(path), width=geometry.width, height=geometry.height)
        return geometry


__all__ = [
    "AspectClass",
    "Geometry",
    "MediaProbe",
    "FFprobeProbe",
    "classify_geometry",
    "parse_probe_output",
]
