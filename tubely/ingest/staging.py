from __future__ import annotations

import asyncio
import re
import secrets
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import ContextManager, Iterator, List, Protocol

from tubely.core.errors import StorageIOFailure, ValidationFailure
from tubely.core.logging import get_logger
from tubely.ingest.faststart import PROCESSED_SUFFIX

UPLOAD_CHUNK_BYTES = 1024 * 1024
RUN_TOKEN_BYTES = 8

# {asset_id}.{token}[.processed].{ext}, the only names a run ever hands out
STAGED_NAME_PATTERN = re.compile(
    rf"^[A-Za-z0-9_-]+\.[0-9a-f]{{{RUN_TOKEN_BYTES * 2}}}(?:{re.escape(PROCESSED_SUFFIX)})?\.[A-Za-z0-9]+$"
)


class UploadSource(Protocol):
    """Anything with an awaitable ``read(size)``, e.g. a Starlette ``UploadFile``."""

    async def read(self, size: int = -1) -> bytes: ...


class StagingRun:
    """Files owned by one ingest run.

    Every path handed out is tracked so the owning ``StagingArea`` can remove
    it when the run ends, whether or not the file was ever written.
    """

    def __init__(self, root: Path, asset_id: str, token: str):
        self.root = root
        self.asset_id = asset_id
        self.token = token
        self._paths: List[Path] = []

    @property
    def stem(self) -> str:
        return f"{self.asset_id}.{self.token}"

    @property
    def paths(self) -> tuple[Path, ...]:
        return tuple(self._paths)

    def path(self, suffix: str = ".mp4") -> Path:
        return self.track(self.root / f"{self.stem}{suffix}")

    def track(self, path: Path) -> Path:
        if path not in self._paths:
            self._paths.append(path)
        return path

    async def write_upload(self, target: Path, upload: UploadSource, *, max_bytes: int) -> int:
        """Stream ``upload`` into ``target``, refusing anything over ``max_bytes``.

        Returns:
            The number of bytes written.
        """
        self.track(target)
        written = 0
        try:
            with target.open("wb") as handle:
                while True:
                    chunk = await upload.read(UPLOAD_CHUNK_BYTES)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > max_bytes:
                        raise ValidationFailure(f"video file exceeds the {max_bytes} byte limit")
                    await asyncio.to_thread(handle.write, chunk)
        except OSError as exc:
            raise StorageIOFailure(f"could not stage upload at {target}", diagnostics=str(exc)) from exc
        return written


class StagingArea(ABC):
    @abstractmethod
    def acquire(self, asset_id: str) -> ContextManager[StagingRun]: ...


class LocalStagingArea(StagingArea):
    """Scratch directory for uploads that are being processed."""

    def __init__(self, root: Path):
        self.root = root
        self.logger = get_logger(component="staging")

    def ensure_root(self) -> Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageIOFailure(f"staging root {self.root} is not writable", diagnostics=str(exc)) from exc
        return self.root

    @contextmanager
    def acquire(self, asset_id: str) -> Iterator[StagingRun]:
        self.ensure_root()
        run = StagingRun(self.root, asset_id, secrets.token_hex(RUN_TOKEN_BYTES))
        try:
            yield run
        except BaseException:
            # the in-flight failure is what the caller needs to see
            self._release(run, strict=False)
            raise
        else:
            self._release(run, strict=True)

    def _release(self, run: StagingRun, *, strict: bool) -> None:
        failed: list[str] = []
        for path in run.paths:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                failed.append(str(path))
                self.logger.warning("staging_cleanup_failed", path=str(path), error=str(exc))
        if failed and strict:
            raise StorageIOFailure("failed to remove staged files", diagnostics=", ".join(failed))
        self.logger.debug("staging_released", asset_id=run.asset_id, token=run.token, removed=len(run.paths) - len(failed))

    def sweep(self, older_than_s: float) -> int:
        """Remove files left behind by runs that never reached cleanup.

        Only names matching ``STAGED_NAME_PATTERN`` are considered, so a root
        shared with other programs keeps their files.
        """
        if not self.root.exists():
            return 0
        cutoff = time.time() - older_than_s
        removed = 0
        for path in self.root.iterdir():
            if not STAGED_NAME_PATTERN.match(path.name) or not path.is_file():
                continue
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                self.logger.warning("staging_sweep_failed", path=str(path), error=str(exc))
        if removed:
            self.logger.info("staging_swept", removed=removed, root=str(self.root))
        return removed


__all__ = [
    "UploadSource",
    "StagingRun",
    "StagingArea",
    "LocalStagingArea",
    "STAGED_NAME_PATTERN",
    "UPLOAD_CHUNK_BYTES",
]
