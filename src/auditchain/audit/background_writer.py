"""Background Audit Writer - moves audit appends off the request path."""

import atexit, logging, queue, threading, time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from auditchain.audit.log import AuditLog
from auditchain.common.constants import AuditConstants

logger = logging.getLogger(__name__)


@dataclass
class PendingAppend:
    actor_id: Optional[str]
    action: str
    payload: Dict[str, Any] = field(default_factory=dict)
    origin: Optional[str] = None


class BackgroundAuditWriter:
    """Background writer for non-blocking audit appends.

    A single worker thread drains a bounded FIFO queue, so events submitted
    through the queue reach the chain in submission order.
    """

    DEFAULT_QUEUE_SIZE = AuditConstants.QUEUE_SIZE
    DEFAULT_FLUSH_TIMEOUT = AuditConstants.FLUSH_TIMEOUT_SECONDS

    def __init__(
        self,
        audit_log: AuditLog,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        flush_timeout: float = DEFAULT_FLUSH_TIMEOUT,
        sync_fallback: bool = True,
    ):
        """Initialize background audit writer.

        Args:
            audit_log: Audit log that performs the actual appends.
            max_queue_size: Maximum number of events to buffer.
            flush_timeout: Timeout for flushing queue on shutdown.
            sync_fallback: Whether to append synchronously when queue is full.
        """
        self.audit_log = audit_log
        self.max_queue_size = max_queue_size
        self.flush_timeout = flush_timeout
        self.sync_fallback = sync_fallback

        # Bounded queue for pending appends
        self._queue: queue.Queue[Optional[PendingAppend]] = queue.Queue(
            maxsize=max_queue_size
        )

        # Shutdown coordination
        self._shutdown_event = threading.Event()
        self._writer_thread: Optional[threading.Thread] = None

        # Statistics
        self._entries_written = 0
        self._entries_failed = 0
        self._entries_dropped = 0
        self._sync_fallback_count = 0

        # Lock for stats
        self._stats_lock = threading.Lock()

        # Start background writer
        self._start_writer()

        # Register shutdown hook
        atexit.register(self.shutdown)

    def _start_writer(self) -> None:
        """Start the background writer thread."""
        self._writer_thread = threading.Thread(
            target=self._writer_loop,
            name="AuditWriter",
            daemon=True,
        )
        self._writer_thread.start()
        logger.info("Background audit writer started")

    def _write(self, pending: PendingAppend) -> None:
        """Append one event; failures are logged and counted, never retried."""
        try:
            self.audit_log.append(
                pending.actor_id, pending.action, pending.payload, origin=pending.origin
            )
            with self._stats_lock:
                self._entries_written += 1
        except Exception as e:
            with self._stats_lock:
                self._entries_failed += 1
            logger.error(f"Failed to write audit event {pending.action}: {e}")

    def _writer_loop(self) -> None:
        """Background loop that writes events from the queue."""
        while not self._shutdown_event.is_set():
            try:
                # Wait for an event with timeout to allow shutdown check
                pending = self._queue.get(timeout=AuditConstants.QUEUE_GET_TIMEOUT)
            except queue.Empty:
                continue

            try:
                if pending is None:
                    # Shutdown signal
                    break
                self._write(pending)
            finally:
                self._queue.task_done()

        # Drain remaining events on shutdown
        self._drain_queue()
        logger.info("Background audit writer stopped")

    def _drain_queue(self) -> None:
        """Drain remaining events from the queue."""
        drained = 0
        while True:
            try:
                pending = self._queue.get_nowait()
            except queue.Empty:
                break
            try:
                if pending is not None:
                    self._write(pending)
                    drained += 1
            finally:
                self._queue.task_done()

        if drained > 0:
            logger.info(f"Drained {drained} audit events during shutdown")

    def submit(
        self,
        actor_id: Optional[str],
        action: str,
        payload: Optional[Dict[str, Any]] = None,
        origin: Optional[str] = None,
    ) -> bool:
        """Queue an audit event.

        Returns:
            True if the event was queued or written, False if it was dropped.

        Note:
            If queue is full and sync_fallback is True, appends synchronously
            (that event may then precede events still in the queue).
            If queue is full and sync_fallback is False, drops the event.
        """
        pending = PendingAppend(actor_id, action, dict(payload or {}), origin)

        if self._shutdown_event.is_set():
            # After shutdown, write synchronously
            self._write(pending)
            return True

        try:
            self._queue.put_nowait(pending)
            return True
        except queue.Full:
            if self.sync_fallback:
                with self._stats_lock:
                    self._sync_fallback_count += 1
                logger.warning("Audit queue full, writing synchronously")
                self._write(pending)
                return True

            with self._stats_lock:
                self._entries_dropped += 1
            logger.error(f"Audit queue full, event dropped: {action}")
            return False

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Shutdown the background writer gracefully.

        Args:
            timeout: Maximum time to wait for queue drain. Uses default if None.
        """
        if self._shutdown_event.is_set():
            return  # Already shutdown

        timeout = timeout if timeout is not None else self.flush_timeout

        logger.info("Shutting down background audit writer...")
        self.flush(timeout=timeout)
        self._shutdown_event.set()

        # Signal writer to stop
        try:
            self._queue.put_nowait(None)
        except queue.Full:
            logger.debug("Queue full at shutdown; writer will see shutdown event")

        # Wait for writer thread
        if self._writer_thread and self._writer_thread.is_alive():
            self._writer_thread.join(timeout=timeout)
            if self._writer_thread.is_alive():
                logger.warning("Audit writer did not stop cleanly")

        atexit.unregister(self.shutdown)
        stats = self.get_stats()
        logger.info(
            f"Audit writer shutdown complete. "
            f"Written: {stats['entries_written']}, "
            f"Failed: {stats['entries_failed']}, "
            f"Dropped: {stats['entries_dropped']}, "
            f"Sync fallbacks: {stats['sync_fallback_count']}"
        )

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for all queued events to be processed.

        Args:
            timeout: Maximum time to wait. Blocks indefinitely if None.

        Returns:
            True if the queue drained, False if timeout occurred.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    def get_stats(self) -> dict:
        """Get writer statistics."""
        with self._stats_lock:
            return {
                "entries_written": self._entries_written,
                "entries_failed": self._entries_failed,
                "entries_dropped": self._entries_dropped,
                "sync_fallback_count": self._sync_fallback_count,
                "queue_size": self._queue.qsize(),
                "max_queue_size": self.max_queue_size,
            }

    @property
    def queue_size(self) -> int:
        """Current number of events in the queue."""
        return self._queue.qsize()

    @property
    def is_running(self) -> bool:
        """Whether the background writer is running."""
        return not self._shutdown_event.is_set()
