"""Ingestion daemon: watcher events → fingerprint → extract → embed → store.

Per-path lifecycle::

    pending → processing → indexed | error
    indexed | error → processing   (next event with changed content)
    any → removed                  (delete event: record purged)

A path is processed by at most one task at a time. ``InFlightSet`` is the
guard: an event for a path that is already in flight is ignored, and the
fingerprint check on the following event picks up whatever changed in the
meantime. An ``asyncio.Semaphore`` bounds how many paths are processed at
once.

Every per-path failure is recorded on the FileRecord and logged; it never
reaches the event loop or another path's task.
"""

from __future__ import annotations

import asyncio
import os
import signal
import threading
import uuid
from collections import Counter
from pathlib import Path
from typing import Any, Literal

from loguru import logger

from cortex import query
from cortex.analyzer import InsightExtractor
from cortex.config import CortexConfig, WatchSource
from cortex.db.models import FileStatus, Insight
from cortex.db.store import Store
from cortex.errors import DimensionMismatch, IOUnavailable
from cortex.extract import extract_text
from cortex.fingerprint import deep_fingerprint
from cortex.watcher import ContentWatcher, EventKind, FileEvent, scan_source

Outcome = Literal["indexed", "error", "unchanged", "dropped", "deleted", "untracked", "busy"]

DRAIN_POLL_SECONDS = 0.1


class InFlightSet:
    """Paths currently owned by a processing or deletion task.

    ``try_add`` is an atomic check-and-insert; the caller that gets True owns
    the path until it calls ``discard``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._paths: set[str] = set()

    def try_add(self, path: str) -> bool:
        with self._lock:
            if path in self._paths:
                return False
            self._paths.add(path)
            return True

    def discard(self, path: str) -> None:
        with self._lock:
            self._paths.discard(path)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._paths

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)


class IngestionDaemon:
    """Consume watcher events and keep the store in sync with the watched files.

    Args:
        config: Validated configuration.
        store: Open store handle; the daemon is its only writer.
        extractor: Insight and embedding source.
        watcher: Optional pre-built watcher; by default one is created on
            ``run()`` publishing onto ``self.queue``.
    """

    def __init__(
        self,
        config: CortexConfig,
        store: Store,
        extractor: InsightExtractor,
        watcher: ContentWatcher | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.extractor = extractor
        self.queue: asyncio.Queue[FileEvent] = asyncio.Queue()
        self.in_flight = InFlightSet()
        self._watcher = watcher
        self._semaphore = asyncio.Semaphore(config.queue.concurrency)
        self._tasks: set[asyncio.Task[Outcome]] = set()
        self._accepting = False
        self._stopped: asyncio.Event | None = None

    @property
    def accepting(self) -> bool:
        return self._accepting

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self, install_signal_handlers: bool = True) -> None:
        """Watch, process, and return once shutdown has drained all work."""
        loop = asyncio.get_running_loop()
        self._stopped = asyncio.Event()
        if install_signal_handlers:
            self._install_signal_handlers(loop)

        stranded = self.store.records.reset_processing()
        if stranded:
            logger.warning("Reset {} record(s) left in 'processing' to 'pending'", stranded)
        purged = self._purge_missing()
        if purged:
            logger.info("Purged {} record(s) whose files no longer exist", purged)

        self._accepting = True
        if self._watcher is None:
            self._watcher = ContentWatcher(self.queue, debounce=self.config.debounce)
        await self._watcher.start(self.config.watch_sources)
        self._enqueue_pending()
        logger.info(
            "Cortex daemon started: {} source(s), concurrency {}",
            len(self.config.watch_sources),
            self.config.queue.concurrency,
        )

        consumer = asyncio.create_task(self._consume())
        try:
            await self._stopped.wait()
        finally:
            consumer.cancel()
            try:
                await consumer
            except asyncio.CancelledError:
                pass
            await self.drain()
            if self._watcher is not None:
                await self._watcher.close()
            if install_signal_handlers:
                self._remove_signal_handlers(loop)
        logger.info("Cortex daemon stopped")

    def request_shutdown(self) -> None:
        """Stop accepting events and stop the watcher. In-flight work continues."""
        if not self._accepting:
            return
        self._accepting = False
        logger.info("Shutting down: {} file(s) in flight", len(self.in_flight))
        if self._watcher is not None:
            self._watcher.stop()
        if self._stopped is not None:
            self._stopped.set()

    async def drain(self, poll: float = DRAIN_POLL_SECONDS) -> None:
        """Block until no path is in flight."""
        announced = False
        while len(self.in_flight):
            if not announced:
                logger.info("Waiting for {} file(s) to finish...", len(self.in_flight))
                announced = True
            await asyncio.sleep(poll)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except (NotImplementedError, ValueError):
                logger.debug("Signal handler for {} not available", sig.name)

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, ValueError):
                pass

    # ------------------------------------------------------------------
    # Event dispatch
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                self.dispatch(event)
            finally:
                self.queue.task_done()

    def dispatch(self, event: FileEvent) -> asyncio.Task[Outcome] | None:
        """Start a task for *event*, or ignore it (shutting down, or path in flight)."""
        if not self._accepting:
            return None
        if not self.in_flight.try_add(event.path):
            logger.debug("Ignoring {} for in-flight path {}", event.kind, event.path)
            return None
        logger.debug("{}: {}", event.kind, event.path)
        task = asyncio.create_task(self._run_claimed(event.kind, event.path, event.source))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_claimed(self, kind: EventKind, path: str, source: WatchSource) -> Outcome:
        # The caller has claimed *path* in the in-flight set.
        try:
            async with self._semaphore:
                if kind == "delete":
                    return self._delete(path)
                return await self._process(path, source)
        except Exception:
            logger.exception("Unexpected failure handling {} for {}", kind, path)
            return "error"
        finally:
            self.in_flight.discard(path)

    def _purge_missing(self) -> int:
        """Purge records whose files disappeared while the daemon was not watching."""
        purged = 0
        for record in self.store.records.list_files():
            if not os.path.exists(record.path):
                self._delete(record.path)
                purged += 1
        return purged

    def _enqueue_pending(self, source_id: str | None = None) -> int:
        queued = 0
        for record in self.store.records.list_files(FileStatus.PENDING, source_id=source_id):
            source = self.config.source(record.source_id) or self.config.source_for_path(record.path)
            if source is None:
                logger.warning("No watch source for pending file {}; skipped", record.path)
                continue
            self.queue.put_nowait(FileEvent("change", record.path, source))
            queued += 1
        return queued

    # ------------------------------------------------------------------
    # Per-path operations
    # ------------------------------------------------------------------

    async def process_path(self, path: str | Path, source: WatchSource) -> Outcome:
        """Process one path now. Returns ``busy`` if it is already in flight."""
        path = str(path)
        if not self.in_flight.try_add(path):
            return "busy"
        return await self._run_claimed("change", path, source)

    async def delete_path(self, path: str | Path) -> Outcome:
        """Purge one path now. Returns ``busy`` if it is already in flight."""
        path = str(path)
        if not self.in_flight.try_add(path):
            return "busy"
        return await self._run_claimed("delete", path, self._fallback_source(path))

    async def _process(self, path: str, source: WatchSource) -> Outcome:
        try:
            fingerprint = await asyncio.to_thread(deep_fingerprint, path)
        except IOUnavailable as exc:
            logger.debug("Dropped event for {}: {}", path, exc.reason)
            if not os.path.exists(path) and self.store.records.get_file(path) is not None:
                self._delete(path)
            return "dropped"

        records = self.store.records
        record = records.ensure_file(path, source.id, source.lens)
        if not self.store.fingerprints.has_changed(path, fingerprint.content_hash):
            logger.debug("Skipping (unchanged): {}", path)
            if record.status is not FileStatus.INDEXED:
                # The stored insights already describe this content.
                records.set_status(record.id, FileStatus.INDEXED)  # type: ignore[arg-type]
            return "unchanged"

        is_duplicate = self.store.fingerprints.is_duplicate(fingerprint.content_hash, exclude_path=path)
        if is_duplicate:
            others = [
                p for p in self.store.fingerprints.find_paths_by_hash(fingerprint.content_hash) if p != path
            ]
            logger.info("Duplicate content: {} matches {}", path, ", ".join(others))

        file_id: int = record.id  # type: ignore[assignment]
        records.mark_processing(file_id, source.id, source.lens, is_duplicate)
        try:
            text = await asyncio.to_thread(extract_text, path)
            drafts = await self.extractor.analyze(text, source.lens, origin=path)
            insights: list[Insight] = []
            vectors: list[list[float]] = []
            for draft in drafts:
                insight = Insight(
                    id=uuid.uuid4().hex,
                    file_id=file_id,
                    title=draft.title,
                    content=draft.content,
                    category=draft.category,
                    lens=source.lens,
                    confidence=draft.confidence,
                    tags=list(draft.tags),
                    related_concepts=list(draft.related_concepts),
                )
                vectors.append(await self.extractor.embed(insight.embedding_text))
                insights.append(insight)
            self.store.commit_indexed(file_id, insights, vectors, fingerprint)
            if not os.path.exists(path):
                # Deleted while in flight; its delete event was ignored.
                logger.debug("File vanished during processing: {}", path)
                self._delete(path)
                return "dropped"
        except DimensionMismatch as exc:
            logger.critical("Embedding dimension mismatch while indexing {}: {}", path, exc)
            records.set_status(file_id, FileStatus.ERROR, f"dimension mismatch: {exc}")
            return "error"
        except IOUnavailable as exc:
            if not os.path.exists(path):
                logger.debug("File vanished during processing: {}", path)
                self._delete(path)
                return "dropped"
            logger.error("Failed to read {}: {}", path, exc)
            records.set_status(file_id, FileStatus.ERROR, str(exc))
            return "error"
        except Exception as exc:
            logger.error("Failed to process {}: {}", path, exc)
            records.set_status(file_id, FileStatus.ERROR, f"{type(exc).__name__}: {exc}")
            return "error"

        for insight in insights:
            logger.info("Insight: {}", insight.title)
        logger.info("Indexed {} ({} insight(s))", path, len(insights))
        return "indexed"

    def _delete(self, path: str) -> Outcome:
        if self.store.purge_file(path):
            logger.info("Deleted: {}", path)
            return "deleted"
        return "untracked"

    def _fallback_source(self, path: str) -> WatchSource:
        source = self.config.source_for_path(path)
        if source is not None:
            return source
        return WatchSource(id="manual", path=Path(path).parent, lens="general")

    # ------------------------------------------------------------------
    # Exposed operations
    # ------------------------------------------------------------------

    async def ingest_now(self, path: str | Path | None = None) -> dict[str, Any]:
        """Process one path, or every file of every source, immediately.

        Returns ``{"path", "outcome", "status"}`` for a single path, or
        ``{"files": n, <outcome>: count, ...}`` for a full pass.
        """
        if path is not None:
            target = os.path.abspath(os.path.expanduser(str(path)))
            outcome = await self.process_path(target, self._fallback_source(target))
            record = self.store.records.get_file(target)
            return {
                "path": target,
                "outcome": outcome,
                "status": record.status.value if record else None,
            }

        jobs = [
            self.process_path(str(p), source)
            for source in self.config.watch_sources
            for p in scan_source(source)
        ]
        outcomes = await asyncio.gather(*jobs)
        summary: dict[str, Any] = {"files": len(outcomes)}
        summary.update(Counter(outcomes))
        return summary

    async def search(self, text: str, limit: int = 10) -> list[query.SearchHit]:
        return await query.search(self.store, self.extractor, text, limit)

    def status(self) -> dict[str, Any]:
        return query.status(self.store, self.config, self.extractor)

    def reindex(self, source_id: str | None = None) -> int:
        """Mark records pending and forget their fingerprints. Returns the count.

        While the daemon is running the records are queued immediately;
        otherwise they are picked up on the next start.
        """
        paths = self.store.records.mark_pending(source_id)
        for p in paths:
            self.store.fingerprints.remove(p, commit=False)
        self.store.conn.commit()
        if self._accepting:
            self._enqueue_pending(source_id)
        logger.info("Reindex: {} file(s) marked pending", len(paths))
        return len(paths)

    def vacuum(self) -> int:
        removed = self.store.vacuum()
        logger.info("Vacuum removed {} orphaned vector(s)", removed)
        return removed
