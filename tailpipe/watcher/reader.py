"""Incremental JSONL reader.

Keeps a byte offset per file and, on each ``read``, parses only the complete
lines appended since the previous read. A trailing line without its newline
is left unread; the offset stops at the last newline so the line is picked up
whole on a later read.

A file whose identity (device and inode) changed since the last read, as
after an atomic replace or a delete-and-recreate, is read from byte 0.
"""

import json
import logging
import os
from collections.abc import Iterator
from pathlib import Path

from tailpipe.errors import FileReadError
from tailpipe.schemas.events import ParsedLine, WatchedFile

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536  # 64 KB chunks


def scan_lines(path: str | Path, limit: int) -> tuple[int, int]:
    """Scan the first ``limit`` bytes of a file in chunks.

    Returns ``(line_count, end)`` where ``end`` is the offset just after the
    last newline (0 if there is none).
    """
    count = 0
    end = 0
    position = 0
    with open(path, "rb") as f:
        while position < limit and (chunk := f.read(min(READ_CHUNK_SIZE, limit - position))):
            newlines = chunk.count(b"\n")
            if newlines:
                count += newlines
                end = position + chunk.rfind(b"\n") + 1
            position += len(chunk)
    return count, end


def _identity(st: os.stat_result) -> tuple[int, int]:
    return st.st_dev, st.st_ino


class IncrementalReader:
    """Offset-tracking reader for append-only JSONL files.

    Usage::

        reader = IncrementalReader()
        for parsed in reader.read(path):
            if parsed.ok:
                handle(parsed.record)

    Lines are read in ``READ_CHUNK_SIZE`` chunks and yielded as each chunk
    is split, so a large file is never held in memory at once.

    The offset is committed only when the generator is exhausted. Abandoning
    iteration part-way leaves the offset where it was, so the same bytes are
    read again next time.

    One instance reads one file at a time. A ``read`` started while another
    generator from the same instance is still open is logged and yields
    nothing.
    """

    def __init__(self, *, enable_buffering: bool = True) -> None:
        self._enable_buffering = enable_buffering
        self._files: dict[Path, WatchedFile] = {}
        self._busy: Path | None = None

    # ------------------------------------------------------------------
    # Position table
    # ------------------------------------------------------------------

    @property
    def enable_buffering(self) -> bool:
        return self._enable_buffering

    @enable_buffering.setter
    def enable_buffering(self, enabled: bool) -> None:
        self._enable_buffering = enabled
        logger.info("Buffering %s", "enabled" if enabled else "disabled")

    @property
    def positions(self) -> dict[Path, WatchedFile]:
        """Snapshot of the position table."""
        return {p: wf.model_copy() for p, wf in self._files.items()}

    @property
    def busy(self) -> bool:
        return self._busy is not None

    def get_position(self, path: str | Path) -> int:
        """Return the stored offset for ``path`` (0 if never read)."""
        watched = self._files.get(Path(path))
        return watched.last_read_offset if watched else 0

    def initialize_position(self, path: str | Path) -> WatchedFile:
        """Record the end of the last complete line of ``path`` as its baseline.

        Nothing is read or yielded. A trailing partial line is left after the
        baseline so it is read whole once its newline arrives.

        Raises:
            FileReadError: If the file cannot be stat'ed or opened.
        """
        path = Path(path)
        try:
            st = path.stat()
            line_count, end = scan_lines(path, st.st_size)
        except OSError as exc:
            raise FileReadError(path, exc) from exc

        device, inode = _identity(st)
        watched = WatchedFile(
            path=path,
            last_read_offset=end,
            last_known_size=st.st_size,
            line_count=line_count,
            device=device,
            inode=inode,
        )
        self._files[path] = watched
        logger.info("Initialized position: %s (%d bytes, %d lines)", path, end, line_count)
        return watched

    def reset_position(self, path: str | Path) -> None:
        """Forget ``path`` so the next read starts from byte 0."""
        if self._files.pop(Path(path), None) is not None:
            logger.info("Reset position: %s", path)

    def reset_all_positions(self) -> None:
        self._files.clear()
        logger.info("Reset all positions")

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read(self, path: str | Path) -> Iterator[ParsedLine]:
        """Yield one ParsedLine per complete, non-blank line added since the last read.

        Raises:
            FileReadError: If stat, open or a chunk read fails. The stored
                offset is unchanged.
        """
        path = Path(path)
        if self._busy is not None:
            logger.warning("Reader busy with %s, ignoring read of %s", self._busy, path)
            return

        self._busy = path
        try:
            yield from self._read_new_lines(path)
        finally:
            self._busy = None

    def _read_new_lines(self, path: Path) -> Iterator[ParsedLine]:
        try:
            st = path.stat()
        except OSError as exc:
            raise FileReadError(path, exc) from exc
        size = st.st_size
        device, inode = _identity(st)

        watched = self._files.get(path)
        if watched is None:
            watched = WatchedFile(path=path, device=device, inode=inode)
            self._files[path] = watched

        if not self._enable_buffering:
            watched.last_read_offset = 0
            watched.line_count = 0
        elif watched.inode is not None and (watched.device, watched.inode) != (device, inode):
            logger.info("File replaced: %s (inode %d -> %d)", path, watched.inode, inode)
            watched.last_read_offset = 0
            watched.line_count = 0
        elif size < watched.last_read_offset:
            # Reset before reading so a failed read cannot replay pre-truncation offsets.
            logger.info(
                "Truncation detected: %s (%d -> %d bytes)", path, watched.last_read_offset, size
            )
            watched.last_read_offset = 0
            watched.line_count = 0

        watched.device = device
        watched.inode = inode
        watched.last_known_size = size
        start = watched.last_read_offset
        if size == start:
            logger.debug("No new data: %s", path)
            return

        try:
            f = open(path, "rb")
        except OSError as exc:
            raise FileReadError(path, exc) from exc

        logger.debug("Reading %s from %d (%d bytes available)", path, start, size - start)
        consumed = start
        line_number = watched.line_count
        pending = bytearray()
        with f:
            f.seek(start)
            remaining = size - start
            while remaining > 0:
                try:
                    chunk = f.read(min(READ_CHUNK_SIZE, remaining))
                except OSError as exc:
                    raise FileReadError(path, exc) from exc
                if not chunk:
                    break
                remaining -= len(chunk)
                pending += chunk

                end = pending.rfind(b"\n")
                if end == -1:
                    continue
                complete = bytes(pending[: end + 1])
                del pending[: end + 1]
                for raw in complete.split(b"\n")[:-1]:
                    line_number += 1
                    consumed += len(raw) + 1
                    parsed = _parse_line(path, line_number, raw)
                    if parsed is not None:
                        yield parsed

        if pending:
            logger.debug("Partial line pending: %s (%d bytes)", path, len(pending))
        watched.last_read_offset = consumed
        watched.line_count = line_number


def _parse_line(path: Path, line_number: int, raw: bytes) -> ParsedLine | None:
    """Decode and parse one line. Returns None for blank lines."""
    if raw.endswith(b"\r"):
        raw = raw[:-1]
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        text = raw.decode("utf-8", errors="replace")
        return ParsedLine(path=path, line_number=line_number, text=text, error=str(exc))

    if not text.strip():
        return None

    try:
        record = json.loads(text)
    except json.JSONDecodeError as exc:
        return ParsedLine(path=path, line_number=line_number, text=text, error=str(exc))
    return ParsedLine(path=path, line_number=line_number, text=text, record=record)
