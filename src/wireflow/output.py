"""Output placement: timestamped backups, atomic writes and shared links.

A run never truncates a previous artifact in place. The old file is renamed
to ``<stem>-YYYYmmddHHMMSS<suffix>`` first, then the new output is written to
a temp file in the same directory and moved over the final name.
"""

from __future__ import annotations

import datetime
import logging
import os
from pathlib import Path
import shutil
import tempfile
from typing import IO, TYPE_CHECKING

if TYPE_CHECKING:
    from types import TracebackType

log = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def backup_path(path: Path, now: datetime.datetime | None = None) -> Path:
    """Return an unused ``<stem>-<timestamp><suffix>`` sibling of *path*."""
    stamp = (now or datetime.datetime.now()).strftime(TIMESTAMP_FORMAT)
    candidate = path.with_name(f"{path.stem}-{stamp}{path.suffix}")
    counter = 1
    while candidate.exists():
        candidate = path.with_name(f"{path.stem}-{stamp}-{counter}{path.suffix}")
        counter += 1
    return candidate


def backup_existing(path: Path, *, now: datetime.datetime | None = None) -> Path | None:
    """Rename an existing *path* to a timestamped backup.

    Returns:
        The backup path, or None when there was nothing to back up.
    """
    if not path.exists():
        return None
    target = backup_path(path, now)
    path.rename(target)
    log.info("Backed up previous output to %s", target)
    return target


def _temp_file(path: Path) -> IO[str]:
    return tempfile.NamedTemporaryFile(  # noqa: SIM115 - closed by callers
        "w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    )


def atomic_write(path: Path, text: str) -> Path:
    """Write *text* to *path* via a temp file and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _temp_file(path)
    try:
        with tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp.name, path)
    except BaseException:
        Path(tmp.name).unlink(missing_ok=True)
        raise
    return path


class StreamSink:
    """Incremental writer for streamed output.

    Deltas are appended (and flushed) to a temp file next to *path*. Leaving
    the context moves the temp file into place, also when the stream failed,
    so partial output survives. An existing *path* is backed up just before
    the move. A failed stream that produced nothing leaves *path* untouched.
    """

    def __init__(self, path: Path, *, backup: bool = True) -> None:
        self.path = path
        self.backup = backup
        self.backup_path: Path | None = None
        self.bytes_written = 0
        self._fh: IO[str] | None = None

    def __enter__(self) -> StreamSink:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = _temp_file(self.path)
        return self

    def write(self, text: str) -> None:
        if self._fh is None:
            raise RuntimeError("StreamSink is not open")
        self._fh.write(text)
        self._fh.flush()
        self.bytes_written += len(text)

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        fh, self._fh = self._fh, None
        if fh is None:
            return
        fh.close()
        if exc_type is not None and self.bytes_written == 0:
            Path(fh.name).unlink(missing_ok=True)
            return
        if self.backup:
            self.backup_path = backup_existing(self.path)
        os.replace(fh.name, self.path)
        if exc_type is not None:
            log.warning("Stream failed; partial output kept in %s", self.path)


def publish_output(output: Path, shared_dir: Path, name: str) -> Path:
    """Expose *output* as ``<shared_dir>/<name><suffix>``.

    Earlier shared files of the same workflow (any extension) are removed
    first. A hardlink is used when possible, otherwise a copy.
    """
    shared_dir.mkdir(parents=True, exist_ok=True)
    for stale in shared_dir.iterdir():
        if stale.stem == name and (stale.is_file() or stale.is_symlink()):
            stale.unlink()
    target = shared_dir / f"{name}{output.suffix}"
    try:
        os.link(output, target)
    except OSError as e:
        log.debug("Hardlink failed (%s); copying %s instead", e, output)
        shutil.copy2(output, target)
    return target
