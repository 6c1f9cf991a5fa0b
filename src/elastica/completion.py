"""
Single-assignment result cells handed out by the batch processor.
"""

from __future__ import annotations

import asyncio
import typing as t

import structlog

if t.TYPE_CHECKING:
    from elastica.bulk import BulkItem, BulkResponse, Operation

log = structlog.get_logger(__name__)


class CompletionHandle:
    """
    Result cell for one queued operation.

    Exactly one delivery wins: the first call to :meth:`resolve` or
    :meth:`fail` settles the handle, later calls are ignored and return
    ``False``. Awaiting the handle returns the decoded
    :class:`~elastica.bulk.BulkResponse` of the batch that carried the
    operation, or raises the batch failure.

    Parameters
    ----------
    operation : Operation
        Operation this handle reports on.
    loop : asyncio.AbstractEventLoop | None, optional
        Loop owning the underlying future. Defaults to the running loop.
    """

    def __init__(
        self,
        operation: Operation,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.operation = operation
        self.position: int | None = None
        self.batch_id: str | None = None
        self._future: asyncio.Future[BulkResponse] = (
            loop or asyncio.get_running_loop()
        ).create_future()

    def resolve(self, value: BulkResponse) -> bool:
        """
        Deliver a success value.

        Parameters
        ----------
        value : BulkResponse
            Decoded response of the batch.

        Returns
        -------
        bool
            ``True`` if this call settled the handle.
        """
        if self._future.done():
            log.debug(
                event="Ignored repeated handle resolution",
                batch_id=self.batch_id,
                position=self.position,
            )
            return False
        self._future.set_result(value)
        return True

    def fail(self, error: BaseException) -> bool:
        """
        Deliver a failure.

        Parameters
        ----------
        error : BaseException
            Error raised to whoever awaits the handle.

        Returns
        -------
        bool
            ``True`` if this call settled the handle.
        """
        if self._future.done():
            log.debug(
                event="Ignored repeated handle failure",
                batch_id=self.batch_id,
                position=self.position,
                error=str(object=error),
            )
            return False
        self._future.set_exception(error)
        # Mark retrieved, the processor already logged the failure.
        self._future.exception()
        return True

    def done(self) -> bool:
        return self._future.done()

    def failed(self) -> bool:
        return self._future.done() and self._future.exception() is not None

    def result(self) -> BulkResponse:
        """Return the delivered value without waiting; raises if not settled."""
        return self._future.result()

    async def wait(self, timeout: float | None = None) -> BulkResponse:
        """
        Wait for delivery.

        Parameters
        ----------
        timeout : float | None, optional
            Seconds to wait before raising :class:`TimeoutError`. The handle
            itself is left untouched by a timeout.

        Returns
        -------
        BulkResponse
            Decoded response of the batch.
        """
        return await asyncio.wait_for(asyncio.shield(self._future), timeout=timeout)

    async def item(self, timeout: float | None = None) -> BulkItem:
        """Wait for delivery and return this operation's own bulk item."""
        response = await self.wait(timeout=timeout)
        if self.position is None:
            raise RuntimeError("Handle was resolved without a batch position")
        return response.item(self.position)

    def __await__(self) -> t.Generator[t.Any, None, BulkResponse]:
        return self.wait().__await__()

    def __repr__(self) -> str:
        state = "pending"
        if self._future.done():
            state = "failed" if self._future.exception() is not None else "resolved"
        return (
            f"CompletionHandle(op={self.operation.op_type.value}, index={self.operation.index!r}, "
            f"id={self.operation.id!r}, state={state})"
        )
