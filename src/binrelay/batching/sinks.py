"""Downstream sinks and the delivery policies used to reach them.

A sink receives every flushed payload together with the opaque routing
parameters (queue name, connection name) from the processor configuration.
Failure handling beyond raising is the sink's concern; nothing here retries.

The :class:`SinkDispatcher` wraps a sink with one of the
:class:`~binrelay.batching.base.DeliveryPolicy` modes:

    block     push on the caller's thread and wait for it (backpressure)
    timeout   push on a worker thread, give up waiting after a deadline
    overflow  enqueue into a bounded queue drained by a worker thread
    drop      hand off only when no push is in flight, otherwise reject

Under ``timeout`` a push that outlives its deadline keeps running on the
worker; the payload is reported as failed to the caller regardless of what
the sink eventually does with it.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from pathlib import Path
from typing import Any, Callable, Protocol, TextIO, runtime_checkable

from binrelay.batching.base import BatchPayload, DeliveryPolicy
from binrelay.errors import BinrelayError
from binrelay.events import encode_json


# =============================================================================
# Exceptions
# =============================================================================


class SinkError(BinrelayError):
    """A payload could not be handed to the sink."""

    def __init__(self, message: str, batch_id: str | None = None) -> None:
        self.batch_id = batch_id
        super().__init__(message)


class SinkTimeoutError(SinkError):
    """The sink did not finish a push within the delivery timeout."""

    pass


class SinkOverflowError(SinkError):
    """The overflow queue is full."""

    pass


class SinkBusyError(SinkError):
    """A push is already in flight under the drop policy."""

    pass


# =============================================================================
# Sink protocol and implementations
# =============================================================================


@runtime_checkable
class Sink(Protocol):
    """Destination for flushed payloads."""

    def push(self, queue_name: str, connection_name: str, payload: BatchPayload) -> None:
        """Deliver a payload.

        Raises:
            Exception: Any error signals a failed delivery.
        """
        ...


class MemorySink:
    """Sink that keeps every payload in memory.

    Useful for tests and for embedding the processor in another pipeline
    stage.
    """

    def __init__(self) -> None:
        self._records: list[tuple[str, str, BatchPayload]] = []
        self._lock = threading.Lock()

    def push(self, queue_name: str, connection_name: str, payload: BatchPayload) -> None:
        with self._lock:
            self._records.append((queue_name, connection_name, payload))

    @property
    def records(self) -> list[tuple[str, str, BatchPayload]]:
        with self._lock:
            return list(self._records)

    @property
    def payloads(self) -> list[BatchPayload]:
        with self._lock:
            return [payload for _, _, payload in self._records]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class CallbackSink:
    """Adapt a plain function to the sink protocol.

    A return value of ``False`` is treated as a rejected push.
    """

    def __init__(self, func: Callable[[str, str, BatchPayload], Any]) -> None:
        self._func = func

    def push(self, queue_name: str, connection_name: str, payload: BatchPayload) -> None:
        if self._func(queue_name, connection_name, payload) is False:
            raise SinkError("sink rejected payload", payload.batch_id)


class JsonLinesSink:
    """Append each payload as one JSON line to a file.

    Each line is ``{"queue": ..., "connection": ..., "payload": {...}}``.
    """

    def __init__(self, path: str | Path, *, encoding: str = "utf-8") -> None:
        self._path = Path(path)
        self._encoding = encoding
        self._handle: TextIO | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def push(self, queue_name: str, connection_name: str, payload: BatchPayload) -> None:
        line = encode_json(
            {"queue": queue_name, "connection": connection_name, "payload": payload.to_dict()}
        ).decode("utf-8")
        with self._lock:
            if self._handle is None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._handle = self._path.open("a", encoding=self._encoding)
            self._handle.write(line + "\n")
            self._handle.flush()

    def close(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.close()
                self._handle = None

    def __enter__(self) -> "JsonLinesSink":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


# =============================================================================
# Dispatcher
# =============================================================================


_STOP = object()

FailureCallback = Callable[[BatchPayload, BaseException], None]


class SinkDispatcher:
    """Deliver payloads to a sink under a configurable policy.

    Synchronous failures are raised to the caller as :class:`SinkError`.
    Failures that happen after an asynchronous hand-off are logged and passed
    to ``on_failure``, which then runs on the worker thread.

    Example:
        >>> dispatcher = SinkDispatcher(sink, DeliveryPolicy.OVERFLOW, capacity=100)
        >>> dispatcher.deliver("binlog_batch", "default", payload)
        >>> dispatcher.close()
    """

    def __init__(
        self,
        sink: Sink,
        policy: DeliveryPolicy = DeliveryPolicy.BLOCK,
        *,
        timeout: float | None = None,
        capacity: int = 1000,
        on_failure: FailureCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            sink: Destination sink.
            policy: Delivery policy.
            timeout: Seconds to wait for a push under ``timeout``.
            capacity: Queue length under ``overflow``.
            on_failure: Called with (payload, error) for asynchronous failures.
            logger: Logger to use instead of the module logger.
        """
        self._sink = sink
        self._policy = DeliveryPolicy(policy)
        self._timeout = timeout
        self._on_failure = on_failure
        self._logger = logger or logging.getLogger(__name__)

        self._executor: ThreadPoolExecutor | None = None
        self._queue: queue.Queue[Any] = queue.Queue(maxsize=capacity)
        self._worker: threading.Thread | None = None
        self._idle = threading.Semaphore(1)
        self._in_flight = 0
        self._lock = threading.Lock()
        self._closed = False

    @property
    def policy(self) -> DeliveryPolicy:
        return self._policy

    @property
    def pending(self) -> int:
        """Payloads accepted but not yet pushed."""
        with self._lock:
            return self._queue.qsize() + self._in_flight

    def deliver(self, queue_name: str, connection_name: str, payload: BatchPayload) -> None:
        """Hand a payload to the sink according to the policy.

        Raises:
            SinkError: If the payload was not accepted.
        """
        if self._closed:
            raise SinkError("dispatcher is closed", payload.batch_id)

        if self._policy == DeliveryPolicy.BLOCK:
            self._push(queue_name, connection_name, payload)
        elif self._policy == DeliveryPolicy.TIMEOUT:
            self._deliver_with_timeout(queue_name, connection_name, payload)
        elif self._policy == DeliveryPolicy.OVERFLOW:
            self._enqueue(queue_name, connection_name, payload)
        else:
            self._deliver_if_idle(queue_name, connection_name, payload)

    def _push(self, queue_name: str, connection_name: str, payload: BatchPayload) -> None:
        try:
            self._sink.push(queue_name, connection_name, payload)
        except SinkError:
            raise
        except Exception as e:
            raise SinkError(f"push failed: {e}", payload.batch_id) from e

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="binrelay-sink"
            )
        return self._executor

    def _deliver_with_timeout(
        self, queue_name: str, connection_name: str, payload: BatchPayload
    ) -> None:
        future = self._get_executor().submit(self._push, queue_name, connection_name, payload)
        try:
            future.result(timeout=self._timeout)
        except FuturesTimeoutError:
            future.add_done_callback(lambda f: self._log_late_push(payload, f))
            raise SinkTimeoutError(
                f"push did not complete within {self._timeout}s", payload.batch_id
            )

    def _log_late_push(self, payload: BatchPayload, future: Future) -> None:
        error = future.exception()
        self._logger.warning(
            "Timed-out push for batch %s finished %s",
            payload.batch_id,
            "with error: %s" % error if error else "successfully",
        )

    def _enqueue(self, queue_name: str, connection_name: str, payload: BatchPayload) -> None:
        self._ensure_worker()
        try:
            self._queue.put_nowait((queue_name, connection_name, payload))
        except queue.Full:
            raise SinkOverflowError(
                f"overflow queue full ({self._queue.maxsize} payloads)", payload.batch_id
            )

    def _ensure_worker(self) -> None:
        if self._worker is None:
            self._worker = threading.Thread(
                target=self._drain, name="binrelay-sink-worker", daemon=True
            )
            self._worker.start()

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                queue_name, connection_name, payload = item
                with self._lock:
                    self._in_flight += 1
                try:
                    self._push(queue_name, connection_name, payload)
                except SinkError as e:
                    self._report(payload, e)
                finally:
                    with self._lock:
                        self._in_flight -= 1
            finally:
                self._queue.task_done()

    def _deliver_if_idle(
        self, queue_name: str, connection_name: str, payload: BatchPayload
    ) -> None:
        if not self._idle.acquire(blocking=False):
            raise SinkBusyError("sink busy, payload dropped", payload.batch_id)
        with self._lock:
            self._in_flight += 1
        try:
            future = self._get_executor().submit(self._push, queue_name, connection_name, payload)
        except RuntimeError as e:
            self._release_idle()
            raise SinkError(f"cannot schedule push: {e}", payload.batch_id) from e
        future.add_done_callback(lambda f: self._finish_idle_push(payload, f))

    def _finish_idle_push(self, payload: BatchPayload, future: Future) -> None:
        self._release_idle()
        error = future.exception()
        if error is not None:
            self._report(payload, error)

    def _release_idle(self) -> None:
        with self._lock:
            self._in_flight -= 1
        self._idle.release()

    def _report(self, payload: BatchPayload, error: BaseException) -> None:
        self._logger.error(
            "Asynchronous delivery of batch %s failed: %s",
            payload.batch_id,
            error,
            extra={"batch_id": payload.batch_id, "event_count": payload.event_count},
        )
        if self._on_failure is not None:
            try:
                self._on_failure(payload, error)
            except Exception:
                self._logger.exception("Delivery failure callback raised")

    def join(self) -> None:
        """Wait until every accepted payload has been pushed or failed."""
        if self._worker is not None:
            self._queue.join()
        if self._executor is not None:
            # A no-op task completes only after everything submitted before it.
            self._executor.submit(lambda: None).result()

    def close(self, wait: bool = True) -> None:
        """Stop accepting payloads and shut the workers down.

        Args:
            wait: Drain queued payloads and wait for in-flight pushes.
        """
        if self._closed:
            return
        self._closed = True
        if self._worker is not None:
            if not wait:
                self._discard_queued()
            self._queue.put(_STOP)
            if wait:
                self._worker.join()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def _discard_queued(self) -> None:
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return
            self._queue.task_done()
            if item is not _STOP:
                self._report(item[2], SinkError("dispatcher closed", item[2].batch_id))

    def __enter__(self) -> "SinkDispatcher":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
