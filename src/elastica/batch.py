"""
Batch processor for put, update, upsert and delete requests.

Batching trades visibility for throughput: operations reach the index some
time after they are enqueued, in exchange for one ``_bulk`` round trip per
batch instead of one request per document.

Operations travel through three stages:

- callers hand ``(operation, handle)`` pairs to a bounded intake queue;
- a single enqueue worker appends them to the queue state under a lock and
  drains it when the count or byte threshold is reached;
- a fixed pool of workers submits drained batches as ``_bulk`` requests and
  resolves every handle of the batch.

A timer drains the queue every ``interval_seconds``; :meth:`BatchProcessor.flush`
and :meth:`BatchProcessor.close` drain it on demand. All drains go through
the same locked swap, so an operation is dispatched in exactly one batch.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import typing as t
import uuid
from dataclasses import dataclass, field
from enum import Enum

import structlog

from elastica import request as es_request
from elastica.bulk import (
    BulkResponse,
    Operation,
    UpdateBody,
    delete_operation,
    encode_operation,
    index_operation,
    join_lines,
    update_operation,
    upsert_operation,
)
from elastica.completion import CompletionHandle
from elastica.config import BatchSettings
from elastica.exceptions import (
    BatchCancelledError,
    BatchEncodingError,
    ElasticaError,
    ProcessorClosedError,
    ProcessorStateError,
)
from elastica.logging import logging_context

if t.TYPE_CHECKING:
    from elastica.cluster import Cluster

log = structlog.get_logger(__name__)

BatchStartFn = t.Callable[["Batch"], t.Any]
BatchEndFn = t.Callable[["Batch", BulkResponse], t.Any]
BatchFailureFn = t.Callable[["Batch", BaseException], t.Any]

_STOP = object()


@dataclass
class _QueueState:
    """Operations waiting for the next drain, paired 1:1 with their handles."""

    operations: list[Operation] = field(default_factory=list)
    handles: list[CompletionHandle] = field(default_factory=list)
    lines: list[str] = field(default_factory=list)
    byte_size: int = 0

    def append(
        self,
        *,
        operation: Operation,
        handle: CompletionHandle,
        lines: list[str],
    ) -> None:
        self.operations.append(operation)
        self.handles.append(handle)
        self.lines.extend(lines)
        self.byte_size += sum(len(line.encode("utf-8")) + 1 for line in lines)

    def __len__(self) -> int:
        return len(self.operations)


@dataclass(frozen=True)
class Batch:
    """
    Operations drained together and submitted in one bulk request.

    ``operations[i]`` is reported on by ``handles[i]`` and by item ``i`` of
    the bulk response.
    """

    batch_id: str
    trigger: str
    operations: tuple[Operation, ...]
    handles: tuple[CompletionHandle, ...]
    lines: tuple[str, ...]
    byte_size: int
    created_at: float

    def body(self) -> str:
        return join_lines(self.lines)

    def __len__(self) -> int:
        return len(self.operations)


class BatchProcessor:
    """
    Queue writes and submit them to the cluster as bulk requests.

    A batch is dispatched when any of these happens:

    - ``count`` operations are pending;
    - the pending bulk body reaches ``max_bytes``;
    - ``interval_seconds`` elapse on the flush timer;
    - :meth:`flush` or :meth:`close` is called.

    Pass ``None`` for ``count``, ``max_bytes`` or ``interval_seconds`` to
    disable that trigger.

    Parameters
    ----------
    cluster : Cluster
        Cluster receiving the bulk requests.
    name : str, optional
        Processor name used in logs and task names.
    count : int | None, optional
        Pending operation count that triggers a drain.
    max_bytes : int | None, optional
        Pending bulk body size, in bytes, that triggers a drain.
    interval_seconds : float | None, optional
        Period of the flush timer.
    concurrency : int, optional
        Number of bulk requests that can be in flight at once.
    buffer_size : int | None, optional
        Capacity of the intake queue. Defaults to ``min(1024, 2 * count)``.
    refresh : bool | str | None, optional
        ``refresh`` parameter forwarded to every bulk request.
    on_batch_start : typing.Callable[[Batch], typing.Any] | None, optional
        Called with the batch before it is submitted.
    on_batch_end : typing.Callable[[Batch, BulkResponse], typing.Any] | None, optional
        Called with the batch and its response after the handles are resolved.
    on_batch_failure : typing.Callable[[Batch, BaseException], typing.Any] | None, optional
        Called with the batch and the error after the handles are failed.

    Notes
    -----
    Callbacks may be plain functions or coroutine functions. Errors raised by
    callbacks are logged and never affect handle resolution.
    """

    def __init__(
        self,
        cluster: Cluster,
        name: str = "elastica",
        count: int | None = 1000,
        max_bytes: int | None = 5 * 1024 * 1024,
        interval_seconds: float | None = 5.0,
        concurrency: int = 8,
        buffer_size: int | None = None,
        refresh: bool | str | None = None,
        on_batch_start: BatchStartFn | None = None,
        on_batch_end: BatchEndFn | None = None,
        on_batch_failure: BatchFailureFn | None = None,
    ) -> None:
        self._settings = BatchSettings(
            name=name,
            count=count,
            max_bytes=max_bytes,
            interval_seconds=interval_seconds,
            concurrency=concurrency,
            buffer_size=buffer_size,
        )
        self._cluster = cluster
        self._refresh = refresh
        self._on_batch_start = on_batch_start
        self._on_batch_end = on_batch_end
        self._on_batch_failure = on_batch_failure

        # Queue state, only touched while holding the lock
        self._state = _QueueState()
        self._state_lock = asyncio.Lock()

        self._intake: asyncio.Queue[t.Any] = asyncio.Queue(
            maxsize=self._settings.intake_buffer_size
        )
        self._work: asyncio.Queue[Batch | None] = asyncio.Queue()
        self._enqueue_task: asyncio.Task[None] | None = None
        self._timer_task: asyncio.Task[None] | None = None
        self._worker_tasks: list[asyncio.Task[None]] = []
        self._started = False
        self._closing = False

        log.debug(
            event="Initialized BatchProcessor",
            processor=name,
            count=self._settings.count,
            max_bytes=self._settings.max_bytes,
            interval_seconds=self._settings.interval_seconds,
            concurrency=self._settings.concurrency,
            buffer_size=self._settings.intake_buffer_size,
        )

    @classmethod
    def from_settings(
        cls,
        cluster: Cluster,
        settings: BatchSettings | None = None,
        **kwargs: t.Any,
    ) -> BatchProcessor:
        """
        Create a processor from settings, reading the environment by default.

        Parameters
        ----------
        cluster : Cluster
            Cluster receiving the bulk requests.
        settings : BatchSettings | None, optional
            Batching policy. Defaults to :meth:`BatchSettings.from_env`.
        **kwargs : typing.Any
            Remaining constructor arguments (``refresh`` and callbacks).

        Returns
        -------
        BatchProcessor
            Unstarted processor.
        """
        settings = settings or BatchSettings.from_env()
        return cls(
            cluster=cluster,
            name=settings.name,
            count=settings.count,
            max_bytes=settings.max_bytes,
            interval_seconds=settings.interval_seconds,
            concurrency=settings.concurrency,
            buffer_size=settings.buffer_size,
            **kwargs,
        )

    @property
    def name(self) -> str:
        return self._settings.name

    @property
    def settings(self) -> BatchSettings:
        return self._settings

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closing and not self._started

    @property
    def pending_count(self) -> int:
        """Number of operations appended and not yet drained."""
        return len(self._state)

    async def start(self) -> BatchProcessor:
        """
        Start the enqueue worker, the flush timer and the worker pool.

        Returns
        -------
        BatchProcessor
            The processor itself, to allow ``processor = await BatchProcessor(...).start()``.
        """
        if self._closing:
            raise ProcessorClosedError(f"Batch processor {self.name!r} has been closed")
        if self._started:
            return self

        self._enqueue_task = asyncio.create_task(
            coro=self._enqueue_loop(),
            name=f"{self.name}_enqueue",
        )
        if self._settings.interval_seconds is not None:
            self._timer_task = asyncio.create_task(
                coro=self._timer_loop(),
                name=f"{self.name}_flush_timer",
            )
        self._worker_tasks = [
            asyncio.create_task(
                coro=self._worker_loop(worker_id=worker_id),
                name=f"{self.name}_worker_{worker_id}",
            )
            for worker_id in range(self._settings.concurrency)
        ]
        self._started = True
        log.info(
            event="Started batch processor",
            processor=self.name,
            concurrency=self._settings.concurrency,
        )
        return self

    def _ensure_accepting(self) -> None:
        if self._closing:
            raise ProcessorClosedError(f"Batch processor {self.name!r} has been closed")
        if not self._started:
            raise ProcessorStateError(f"Batch processor {self.name!r} has not been started")

    async def enqueue(self, operation: Operation) -> CompletionHandle:
        """
        Queue an operation and return its completion handle.

        Suspends only while the intake queue is full.

        Parameters
        ----------
        operation : Operation
            Operation to queue.

        Returns
        -------
        CompletionHandle
            Handle resolved with the bulk response of the batch that carries
            the operation.
        """
        self._ensure_accepting()
        handle = CompletionHandle(operation=operation)
        await self._intake.put((operation, handle))
        return handle

    async def put(
        self,
        index: str | Enum,
        doc: t.Mapping[str, t.Any],
        id: str | int | None = None,
        **options: t.Any,
    ) -> CompletionHandle:
        """
        Queue ``doc`` for indexing into ``index``.

        A document with the same ``id`` is replaced; without ``id`` one is
        generated. ``version`` with ``version_type="external"`` gives
        optimistic locking; ``routing`` targets a shard explicitly.
        """
        return await self.enqueue(index_operation(index, doc, id=id, **options))

    async def update(
        self,
        index: str | Enum,
        id: str | int,
        doc_or_script: UpdateBody,
        **options: t.Any,
    ) -> CompletionHandle:
        """
        Queue a partial update of an existing document.

        The bulk item for this operation fails if the document does not exist.
        Options: ``detect_noop``, ``retry_on_conflict``, ``routing``.
        """
        return await self.enqueue(update_operation(index, id, doc_or_script, **options))

    async def upsert(
        self,
        index: str | Enum,
        id: str | int,
        insert_doc: t.Mapping[str, t.Any],
        doc_or_script: UpdateBody,
        **options: t.Any,
    ) -> CompletionHandle:
        """Queue an update that inserts ``insert_doc`` when the document is missing."""
        return await self.enqueue(
            upsert_operation(index, id, insert_doc, doc_or_script, **options)
        )

    async def delete(self, index: str | Enum, id: str | int, **options: t.Any) -> CompletionHandle:
        """Queue the deletion of one document."""
        return await self.enqueue(delete_operation(index, id, **options))

    async def _enqueue_loop(self) -> None:
        """Append intake items to the queue state, in arrival order."""
        with logging_context(processor=self.name):
            while True:
                item = await self._intake.get()
                try:
                    if item is _STOP:
                        self._reject_remaining_intake()
                        return
                    operation, handle = item
                    await self._append(operation=operation, handle=handle)
                except Exception as error:
                    log.error(
                        event="Enqueue worker error",
                        error=str(object=error),
                    )
                    if item is not _STOP:
                        item[1].fail(error)
                finally:
                    self._intake.task_done()

    def _reject_remaining_intake(self) -> None:
        while not self._intake.empty():
            _, handle = self._intake.get_nowait()
            handle.fail(ProcessorClosedError(f"Batch processor {self.name!r} has been closed"))
            self._intake.task_done()

    async def _append(self, *, operation: Operation, handle: CompletionHandle) -> None:
        try:
            lines = encode_operation(operation)
        except BatchEncodingError as error:
            log.error(
                event="Rejected operation that cannot be encoded",
                op_type=operation.op_type.value,
                index=operation.index,
                id=operation.id,
                error=str(object=error),
            )
            handle.fail(error)
            return

        batch: Batch | None = None
        async with self._state_lock:
            self._state.append(operation=operation, handle=handle, lines=lines)
            pending_count = len(self._state)
            count = self._settings.count
            max_bytes = self._settings.max_bytes
            if count is not None and pending_count >= count:
                log.debug(event="Batch count reached", count=count)
                batch = self._swap_state(trigger="count")
            elif max_bytes is not None and self._state.byte_size >= max_bytes:
                log.debug(
                    event="Batch size reached",
                    max_bytes=max_bytes,
                    byte_size=self._state.byte_size,
                )
                batch = self._swap_state(trigger="size")

        if batch is not None:
            self._dispatch(batch=batch)

    def _swap_state(self, *, trigger: str) -> Batch | None:
        """
        Replace the queue state with an empty one and return its contents.

        Must be called while holding ``_state_lock``.
        """
        if not self._state.operations:
            return None
        state, self._state = self._state, _QueueState()
        batch = Batch(
            batch_id=str(object=uuid.uuid4()),
            trigger=trigger,
            operations=tuple(state.operations),
            handles=tuple(state.handles),
            lines=tuple(state.lines),
            byte_size=state.byte_size,
            created_at=time.time(),
        )
        for position, handle in enumerate(batch.handles):
            handle.position = position
            handle.batch_id = batch.batch_id
        log.debug(
            event="Drained batch queue",
            batch_id=batch.batch_id,
            trigger=trigger,
            operation_count=len(batch),
            byte_size=batch.byte_size,
        )
        return batch

    async def drain(self, trigger: str = "manual") -> Batch | None:
        """
        Atomically take every pending operation.

        Parameters
        ----------
        trigger : str, optional
            Label recorded on the batch.

        Returns
        -------
        Batch | None
            The drained batch, or ``None`` when nothing was pending.
        """
        async with self._state_lock:
            return self._swap_state(trigger=trigger)

    def _dispatch(self, *, batch: Batch) -> None:
        log.info(
            event="Submitting batch",
            batch_id=batch.batch_id,
            trigger=batch.trigger,
            operation_count=len(batch),
        )
        self._work.put_nowait(batch)

    async def _timer_loop(self) -> None:
        interval = t.cast(float, self._settings.interval_seconds)
        with logging_context(processor=self.name):
            try:
                while True:
                    await asyncio.sleep(delay=interval)
                    batch = await self.drain(trigger="interval")
                    if batch is None:
                        log.debug(event="Flush interval elapsed with empty queue")
                        continue
                    self._dispatch(batch=batch)
            except asyncio.CancelledError:
                log.debug(event="Flush timer cancelled")
                raise

    async def _worker_loop(self, *, worker_id: int) -> None:
        with logging_context(processor=self.name, worker_id=worker_id):
            while True:
                batch = await self._work.get()
                try:
                    if batch is None:
                        log.debug(event="Batch worker stopped")
                        return
                    await self._submit(batch=batch)
                except Exception as error:
                    log.error(
                        event="Batch worker error",
                        batch_id=batch.batch_id if batch is not None else None,
                        error=str(object=error),
                    )
                    if batch is not None:
                        self._fail_batch(batch=batch, error=error)
                finally:
                    self._work.task_done()

    async def _submit(self, *, batch: Batch) -> None:
        """Process ``batch``, failing its handles if the submitting task is cancelled."""
        try:
            await self._process_batch(batch=batch)
        except asyncio.CancelledError:
            log.warning(
                event="Batch submission cancelled",
                batch_id=batch.batch_id,
                operation_count=len(batch),
            )
            self._fail_batch(
                batch=batch,
                error=BatchCancelledError(
                    f"Submission of batch {batch.batch_id} was cancelled before it settled"
                ),
            )
            raise

    async def _process_batch(self, *, batch: Batch) -> None:
        """
        Submit one batch and settle all of its handles.

        Parameters
        ----------
        batch : Batch
            Batch to submit.
        """
        await self._invoke_callback(self._on_batch_start, batch)
        log.info(
            event="Processing batch",
            batch_id=batch.batch_id,
            operation_count=len(batch),
            byte_size=batch.byte_size,
        )
        try:
            payload = await es_request.run(
                self._cluster,
                es_request.HttpRequest(
                    method="POST",
                    segments=("_bulk",),
                    query={"refresh": self._refresh},
                    content=batch.body(),
                    content_type=es_request.NDJSON_CONTENT_TYPE,
                ),
            )
            response = BulkResponse.model_validate(payload)
            if len(response.items) != len(batch):
                raise ElasticaError(
                    f"Bulk response has {len(response.items)} items for {len(batch)} operations"
                )
        except Exception as error:
            log.error(
                event="Batch submission failed",
                batch_id=batch.batch_id,
                operation_count=len(batch),
                error=str(object=error),
            )
            self._fail_batch(batch=batch, error=error)
            await self._invoke_callback(self._on_batch_failure, batch, error)
            return

        for handle in batch.handles:
            handle.resolve(response)
        failed = response.failed_items()
        log.info(
            event="Batch resolved",
            batch_id=batch.batch_id,
            operation_count=len(batch),
            failed_count=len(failed),
            took_ms=response.took,
        )
        await self._invoke_callback(self._on_batch_end, batch, response)

    def _fail_batch(self, *, batch: Batch, error: BaseException) -> None:
        for handle in batch.handles:
            handle.fail(error)

    async def _invoke_callback(
        self,
        callback: t.Callable[..., t.Any] | None,
        *args: t.Any,
    ) -> None:
        if callback is None:
            return
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as error:
            log.error(
                event="Batch callback error",
                callback=getattr(callback, "__name__", repr(callback)),
                error=str(object=error),
            )

    async def flush(self) -> None:
        """
        Submit everything enqueued so far and wait for it to settle.

        Waits for the intake queue to be appended, drains the queue state,
        submits the drained batch in the calling task and then waits for the
        batches already handed to the worker pool. Flushing an empty
        processor sends nothing.
        """
        if not self._started:
            if self._closing:
                return
            raise ProcessorStateError(f"Batch processor {self.name!r} has not been started")
        await self._intake.join()
        batch = await self.drain(trigger="flush")
        if batch is not None:
            log.info(
                event="Flushing batch",
                batch_id=batch.batch_id,
                operation_count=len(batch),
            )
            await self._submit(batch=batch)
        await self._work.join()

    async def close(self) -> None:
        """
        Submit whatever remains, stop every background task and refuse new work.

        Pending operations are drained and submitted before the worker pool
        stops; :meth:`close` returns once all of them are settled.
        """
        if not self._started or self._closing:
            return
        self._closing = True
        log.info(event="Closing batch processor", processor=self.name)

        if self._timer_task is not None and not self._timer_task.done():
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                log.debug(event="Flush timer cancelled during close", processor=self.name)
        self._timer_task = None

        await self._intake.put(_STOP)
        if self._enqueue_task is not None:
            await self._enqueue_task
            self._enqueue_task = None

        batch = await self.drain(trigger="close")
        if batch is not None:
            log.info(
                event="Submitting final batch on close",
                processor=self.name,
                operation_count=len(batch),
            )
            self._dispatch(batch=batch)

        for _ in self._worker_tasks:
            self._work.put_nowait(None)
        await asyncio.gather(*self._worker_tasks)
        self._worker_tasks = []
        self._started = False
        log.debug(event="Batch processor closed", processor=self.name)

    async def __aenter__(self) -> BatchProcessor:
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        await self.close()
