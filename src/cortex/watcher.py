"""File-system watcher: watchdog notifications → debounced FileEvents on an asyncio queue.

watchdog callbacks run on the observer thread. They filter the path and hand
it to the event loop with ``call_soon_threadsafe``; from there on everything
happens on the loop thread. Each path gets a quiet-period timer: rapid
successive writes collapse into one event, emitted once the file has been
stable for ``debounce`` seconds.

The queue has exactly one producer (this watcher) and one consumer (the
daemon).
"""

from __future__ import annotations

import asyncio
import fnmatch
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from cortex.config import WatchSource

EventKind = Literal["add", "change", "delete"]

# Always ignored, whatever the source config says.
IGNORED_DIRS: frozenset[str] = frozenset(
    {
        ".git",
        ".hg",
        ".svn",
        "node_modules",
        "__pycache__",
        ".venv",
        "venv",
        "dist",
        "build",
        ".mypy_cache",
        ".pytest_cache",
    }
)


@dataclass(frozen=True)
class FileEvent:
    kind: EventKind
    path: str
    source: WatchSource
    size: int | None = None
    mtime: float | None = None


def should_ignore(path: str | Path, source: WatchSource) -> bool:
    """True if an event for *path* must be suppressed for *source*."""
    p = Path(path)
    try:
        rel = p.relative_to(source.path)
    except ValueError:
        return True

    parts = rel.parts
    if not parts:
        return True
    if any(part.startswith(".") or part in IGNORED_DIRS for part in parts):
        return True
    if not source.recursive and len(parts) > 1:
        return True
    if source.extensions and p.suffix.lower() not in source.extensions:
        return True

    rel_posix = rel.as_posix()
    for pattern in source.ignore:
        if (
            fnmatch.fnmatch(rel_posix, pattern)
            or fnmatch.fnmatch(f"/{rel_posix}", pattern)
            or fnmatch.fnmatch(p.name, pattern)
        ):
            return True
    return False


def scan_source(source: WatchSource) -> Iterator[Path]:
    """Yield every existing file under *source* that passes its filters."""
    if not source.path.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(source.path):
        # Prune ignored directories in place so os.walk skips them.
        dirnames[:] = sorted(
            d for d in dirnames if not d.startswith(".") and d not in IGNORED_DIRS
        )
        if not source.recursive:
            dirnames[:] = []
        for name in sorted(filenames):
            candidate = Path(dirpath) / name
            if not should_ignore(candidate, source):
                yield candidate


def _coalesce(previous: EventKind, new: EventKind) -> EventKind:
    """Kind of the single event that replaces *previous* followed by *new*."""
    if new == "delete":
        return "delete"
    if previous == "add":
        return "add"
    if previous == "delete":
        return "change"
    return new


@dataclass
class _Pending:
    kind: EventKind
    source: WatchSource
    timer: asyncio.TimerHandle


class _SourceHandler(FileSystemEventHandler):
    """watchdog handler bound to one WatchSource."""

    def __init__(self, watcher: ContentWatcher, source: WatchSource) -> None:
        super().__init__()
        self._watcher = watcher
        self._source = source

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify("add", event.src_path, self._source)

    def on_modified(self, event: FileSystemEvent) -> None:
        # Directory modifications are noise: the file events carry the change.
        if not event.is_directory:
            self._watcher.notify("change", event.src_path, self._source)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher.notify("delete", event.src_path, self._source)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._watcher.notify("delete", event.src_path, self._source)
        dest = getattr(event, "dest_path", None)
        if dest:
            self._watcher.notify("add", dest, self._source)


class ContentWatcher:
    """Watch every configured source and publish FileEvents onto *queue*.

    Args:
        queue: Destination queue, consumed by the daemon.
        debounce: Quiet period in seconds before an event is emitted.
    """

    def __init__(self, queue: asyncio.Queue[FileEvent], debounce: float = 0.5) -> None:
        self._queue = queue
        self._debounce = debounce
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Observer | None = None
        self._stopping: Observer | None = None
        self._sources: dict[str, WatchSource] = {}
        self._watches: dict[str, object] = {}
        self._pending: dict[str, _Pending] = {}
        self._stopped = False

    @property
    def sources(self) -> list[WatchSource]:
        return list(self._sources.values())

    async def start(self, sources: Iterable[WatchSource], initial_scan: bool = True) -> None:
        """Start the observer and watch *sources*.

        With *initial_scan*, an ``add`` event is queued for every existing
        file so that content changed while the daemon was down is caught up.
        """
        self._loop = asyncio.get_running_loop()
        self._stopped = False
        self._observer = Observer()
        self._observer.start()
        self.reload(sources)
        if initial_scan:
            for source in self._sources.values():
                for path in scan_source(source):
                    self._emit_now("add", str(path), source)

    def reload(self, sources: Iterable[WatchSource]) -> None:
        """Replace the whole watched source set."""
        if self._observer is None:
            raise RuntimeError("ContentWatcher.start() must be called first")
        new = {s.id: s for s in sources}

        for source_id in list(self._sources):
            if source_id not in new or new[source_id] != self._sources[source_id]:
                watch = self._watches.pop(source_id, None)
                if watch is not None:
                    self._observer.unschedule(watch)
                del self._sources[source_id]

        for source_id, source in new.items():
            if source_id in self._sources:
                continue
            if not source.path.is_dir():
                logger.warning("Watch source '{}' path does not exist: {}", source_id, source.path)
                continue
            self._watches[source_id] = self._observer.schedule(
                _SourceHandler(self, source), str(source.path), recursive=source.recursive
            )
            self._sources[source_id] = source
            logger.info("Watching {} ({}, lens={})", source.path, source_id, source.lens)

    def stop(self) -> None:
        """Stop emitting events and cancel pending timers.

        Signals the observer thread without waiting for it; ``close()`` waits.
        """
        self._stopped = True
        for pending in self._pending.values():
            pending.timer.cancel()
        self._pending.clear()
        if self._observer is not None:
            self._observer.stop()
            self._stopping = self._observer
            self._observer = None
        self._watches.clear()
        self._sources.clear()

    async def close(self) -> None:
        """``stop()``, then join the observer thread off the event loop."""
        self.stop()
        observer, self._stopping = self._stopping, None
        if observer is not None:
            await asyncio.to_thread(observer.join)

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------

    def notify(self, kind: EventKind, path: str, source: WatchSource) -> None:
        """Entry point for raw notifications; safe to call from any thread."""
        if self._stopped or self._loop is None or should_ignore(path, source):
            return
        self._loop.call_soon_threadsafe(self._schedule, kind, str(path), source)

    def _schedule(self, kind: EventKind, path: str, source: WatchSource) -> None:
        if self._stopped:
            return
        previous = self._pending.pop(path, None)
        if previous is not None:
            previous.timer.cancel()
            kind = _coalesce(previous.kind, kind)
        assert self._loop is not None
        timer = self._loop.call_later(self._debounce, self._flush, path)
        self._pending[path] = _Pending(kind, source, timer)

    def _flush(self, path: str) -> None:
        pending = self._pending.pop(path, None)
        if pending is None or self._stopped:
            return
        self._emit_now(pending.kind, path, pending.source)

    def _emit_now(self, kind: EventKind, path: str, source: WatchSource) -> None:
        size: int | None = None
        mtime: float | None = None
        if kind != "delete":
            try:
                st = os.stat(path)
            except OSError:
                # Removed between notification and now: as if nothing happened.
                logger.debug("Dropped {} event, file vanished: {}", kind, path)
                return
            size, mtime = st.st_size, st.st_mtime
        self._queue.put_nowait(FileEvent(kind, path, source, size, mtime))
