"""
Tests for the BatchProcessor in elastica.batch.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from elastica.batch import Batch, BatchProcessor
from elastica.bulk import BulkResponse, index_operation
from elastica.config import BatchSettings
from elastica.exceptions import (
    BatchCancelledError,
    BatchEncodingError,
    HTTPError,
    ProcessorClosedError,
    ProcessorStateError,
    TransportError,
)
from elastica.script import Script

WAIT_SECONDS = 5


def ids_per_call(fake_es) -> list[list[str]]:
    """Return the document ids carried by each recorded bulk call, in line order."""
    calls = []
    for lines in fake_es.bulk_calls:
        ids = []
        for line in lines:
            if len(line) == 1:
                (metadata,) = line.values()
                if isinstance(metadata, dict) and "_index" in metadata:
                    ids.append(metadata["_id"])
        calls.append(ids)
    return calls


@pytest.mark.asyncio
async def test_enqueue_before_start_raises(cluster):
    processor = BatchProcessor(cluster, interval_seconds=None)

    with pytest.raises(ProcessorStateError):
        await processor.put("orders", {"total": 1}, id="1")


@pytest.mark.asyncio
async def test_count_threshold_then_flush_sends_remainder(cluster, fake_es):
    on_batch_start = Mock()
    async with BatchProcessor(
        cluster,
        count=2,
        interval_seconds=None,
        on_batch_start=on_batch_start,
    ) as processor:
        first = await processor.put("orders", {"total": 1}, id="1")
        second = await processor.put("orders", {"total": 2}, id="2")
        third = await processor.put("orders", {"total": 3}, id="3")

        await first.wait(timeout=WAIT_SECONDS)
        await second.wait(timeout=WAIT_SECONDS)
        await processor._intake.join()

        assert processor.pending_count == 1
        assert not third.done()
        assert ids_per_call(fake_es) == [["1", "2"]]

        await processor.flush()

        assert third.done()
        assert sorted(ids_per_call(fake_es)) == [["1", "2"], ["3"]]
        assert first.batch_id == second.batch_id != third.batch_id
        assert (first.position, second.position, third.position) == (0, 1, 0)
        assert (await third.item()).id == "3"
        triggers = [call.args[0].trigger for call in on_batch_start.call_args_list]
        assert triggers == ["count", "flush"]

    assert fake_es.source(index="orders", id="3") == {"total": 3}


@pytest.mark.asyncio
async def test_bulk_body_is_ndjson(cluster, fake_es):
    async with BatchProcessor(cluster, count=None, interval_seconds=None) as processor:
        await processor.put("orders", {"total": 1}, id="1")
        await processor.delete("orders", "2")
        await processor.flush()

    assert fake_es.bulk_content_types == ["application/x-ndjson"]
    bulk_request = next(request for request in fake_es.requests if request.url.path == "/_bulk")
    assert bulk_request.content == (
        b'{"index":{"_index":"orders","_id":"1"}}\n'
        b'{"total":1}\n'
        b'{"delete":{"_index":"orders","_id":"2"}}\n'
    )


@pytest.mark.asyncio
async def test_every_operation_is_dispatched_exactly_once(cluster, fake_es):
    processor = BatchProcessor(cluster, count=7, interval_seconds=0.01, concurrency=3)
    await processor.start()

    async def produce(producer: int):
        return [
            await processor.put("orders", {"producer": producer}, id=f"{producer}-{n}")
            for n in range(10)
        ]

    batches = await asyncio.gather(*(produce(producer) for producer in range(10)))
    handles = [handle for batch in batches for handle in batch]
    await processor.flush()
    await processor.close()

    sent = [doc_id for call in ids_per_call(fake_es) for doc_id in call]
    assert sorted(sent) == sorted(f"{p}-{n}" for p in range(10) for n in range(10))
    assert all(len(call) <= 7 for call in ids_per_call(fake_es))
    assert all(handle.done() and not handle.failed() for handle in handles)
    for handle in handles:
        assert (await handle.item()).id == handle.operation.id


@pytest.mark.asyncio
async def test_flush_of_empty_processor_sends_nothing(cluster, fake_es):
    async with BatchProcessor(cluster, interval_seconds=None) as processor:
        await processor.flush()
        await processor.flush()

    assert fake_es.requests == []


@pytest.mark.asyncio
async def test_interval_timer_dispatches_pending_operations(cluster, fake_es):
    on_batch_start = Mock()
    async with BatchProcessor(
        cluster,
        count=None,
        max_bytes=None,
        interval_seconds=0.05,
        on_batch_start=on_batch_start,
    ) as processor:
        handle = await processor.put("orders", {"total": 1}, id="1")

        response = await handle.wait(timeout=WAIT_SECONDS)

    assert isinstance(response, BulkResponse)
    assert ids_per_call(fake_es) == [["1"]]
    (batch,) = on_batch_start.call_args.args
    assert batch.trigger == "interval"


@pytest.mark.asyncio
async def test_byte_threshold_dispatches_batch(cluster, fake_es):
    on_batch_start = Mock()
    # Each operation below encodes to 48 bytes.
    async with BatchProcessor(
        cluster,
        count=None,
        max_bytes=90,
        interval_seconds=None,
        on_batch_start=on_batch_start,
    ) as processor:
        first = await processor.put("orders", {"n": 1}, id="1")
        second = await processor.put("orders", {"n": 2}, id="2")

        await asyncio.gather(first.wait(timeout=WAIT_SECONDS), second.wait(timeout=WAIT_SECONDS))

    (batch,) = on_batch_start.call_args.args
    assert batch.trigger == "size"
    assert batch.byte_size == 96
    assert ids_per_call(fake_es) == [["1", "2"]]


@pytest.mark.asyncio
async def test_transport_failure_is_isolated_to_its_batch(cluster, fake_es):
    fake_es.fail_bulk_for_ids = {"bad": "connect"}
    on_batch_failure = Mock()

    async with BatchProcessor(
        cluster,
        count=2,
        interval_seconds=None,
        concurrency=2,
        on_batch_failure=on_batch_failure,
    ) as processor:
        failing = [
            await processor.put("orders", {}, id="1"),
            await processor.put("orders", {}, id="bad"),
        ]
        passing = [
            await processor.put("orders", {}, id="3"),
            await processor.put("orders", {}, id="4"),
        ]
        await processor.flush()

    for handle in failing:
        with pytest.raises(TransportError):
            await handle
    for handle in passing:
        assert (await handle.item()).ok

    on_batch_failure.assert_called_once()
    batch, error = on_batch_failure.call_args.args
    assert [operation.id for operation in batch.operations] == ["1", "bad"]
    assert isinstance(error, TransportError)
    assert fake_es.source(index="orders", id="1") is None
    assert fake_es.source(index="orders", id="3") == {}


@pytest.mark.asyncio
async def test_http_failure_fails_every_handle_of_the_batch(cluster, fake_es):
    fake_es.fail_bulk_for_ids = {"2": 503}

    async with BatchProcessor(cluster, count=None, interval_seconds=None) as processor:
        handles = [await processor.put("orders", {}, id=str(n)) for n in range(3)]
        await processor.flush()

    for handle in handles:
        with pytest.raises(HTTPError) as exc_info:
            await handle
        assert exc_info.value.status == 503


@pytest.mark.asyncio
async def test_item_errors_resolve_the_handle(cluster, fake_es):
    fake_es.reject_ids = {"2"}

    async with BatchProcessor(cluster, count=None, interval_seconds=None) as processor:
        accepted = await processor.put("orders", {}, id="1")
        rejected = await processor.put("orders", {}, id="2")
        await processor.flush()

    response = await rejected
    assert response.errors is True
    assert [position for position, _ in response.failed_items()] == [1]
    assert (await accepted.item()).ok
    item = await rejected.item()
    assert item.status == 400
    assert item.error["type"] == "mapper_parsing_exception"


@pytest.mark.asyncio
async def test_unencodable_operation_fails_only_its_own_handle(cluster, fake_es):
    async with BatchProcessor(cluster, count=2, interval_seconds=None) as processor:
        good = await processor.put("orders", {"total": 1}, id="1")
        bad = await processor.put("orders", {"total": object()}, id="bad")
        other = await processor.put("orders", {"total": 2}, id="2")

        with pytest.raises(BatchEncodingError):
            await bad.wait(timeout=WAIT_SECONDS)
        await asyncio.gather(good.wait(timeout=WAIT_SECONDS), other.wait(timeout=WAIT_SECONDS))

    assert ids_per_call(fake_es) == [["1", "2"]]
    assert bad.position is None


@pytest.mark.asyncio
async def test_update_upsert_and_delete_through_the_processor(cluster, fake_es):
    fake_es.store(index="orders", id="1", source={"status": "open", "total": 1})
    fake_es.store(index="orders", id="2", source={"status": "open"})

    async with BatchProcessor(cluster, count=None, interval_seconds=None) as processor:
        updated = await processor.update("orders", "1", {"status": "paid"}, retry_on_conflict=3)
        upserted = await processor.upsert(
            "orders", "9", {"count": 1}, Script(source="ctx._source.count++")
        )
        deleted = await processor.delete("orders", "2")
        missing = await processor.update("orders", "404", {"status": "paid"})
        await processor.flush()

    assert (await updated.item()).result == "updated"
    assert (await upserted.item()).result == "created"
    assert (await deleted.item()).result == "deleted"
    assert (await missing.item()).status == 404
    assert fake_es.source(index="orders", id="1") == {"status": "paid", "total": 1}
    assert fake_es.source(index="orders", id="9") == {"count": 1}
    assert fake_es.source(index="orders", id="2") is None


@pytest.mark.asyncio
async def test_close_flushes_remaining_and_rejects_new_work(cluster, fake_es):
    processor = BatchProcessor(cluster, count=100, interval_seconds=None)
    await processor.start()
    handles = [await processor.put("orders", {}, id=str(n)) for n in range(3)]

    await processor.close()

    assert processor.closed
    assert all(handle.done() and not handle.failed() for handle in handles)
    assert ids_per_call(fake_es) == [["0", "1", "2"]]
    with pytest.raises(ProcessorClosedError):
        await processor.put("orders", {}, id="late")
    with pytest.raises(ProcessorClosedError):
        await processor.start()

    await processor.close()
    assert len(fake_es.bulk_calls) == 1


@pytest.mark.asyncio
async def test_cancelled_flush_fails_the_handles_it_was_sending(cluster, fake_es):
    async def slow_handler(request: httpx.Request) -> httpx.Response:
        await asyncio.sleep(0.5)
        return fake_es.handler(request)

    transport = httpx.MockTransport(slow_handler)
    cluster._client_factory = lambda: httpx.AsyncClient(transport=transport)
    processor = BatchProcessor(cluster, count=None, interval_seconds=None)
    await processor.start()
    handle = await processor.put("orders", {"total": 1}, id="1")

    with pytest.raises(TimeoutError):
        await asyncio.wait_for(processor.flush(), timeout=0.05)
    await processor.close()

    assert handle.failed()
    with pytest.raises(BatchCancelledError):
        await handle.wait(timeout=WAIT_SECONDS)


@pytest.mark.asyncio
async def test_cancelled_worker_fails_the_handles_it_was_sending(cluster, fake_es):
    sending = asyncio.Event()

    async def stalled_handler(request: httpx.Request) -> httpx.Response:
        sending.set()
        await asyncio.sleep(WAIT_SECONDS)
        return fake_es.handler(request)

    transport = httpx.MockTransport(stalled_handler)
    cluster._client_factory = lambda: httpx.AsyncClient(transport=transport)
    processor = BatchProcessor(cluster, count=1, interval_seconds=None, concurrency=1)
    await processor.start()
    handle = await processor.put("orders", {"total": 1}, id="1")
    await asyncio.wait_for(sending.wait(), timeout=WAIT_SECONDS)

    (worker,) = processor._worker_tasks
    worker.cancel()
    with pytest.raises(asyncio.CancelledError):
        await worker

    with pytest.raises(BatchCancelledError):
        await handle.wait(timeout=WAIT_SECONDS)

    processor._enqueue_task.cancel()
    await asyncio.gather(processor._enqueue_task, return_exceptions=True)


@pytest.mark.asyncio
async def test_drain_swaps_queue_state_atomically(cluster, fake_es):
    async with BatchProcessor(cluster, count=None, interval_seconds=None) as processor:
        handles = [await processor.put("orders", {}, id=str(n)) for n in range(2)]
        await processor._intake.join()
        assert processor.pending_count == 2

        batch = await processor.drain()

        assert isinstance(batch, Batch)
        assert batch.trigger == "manual"
        assert len(batch) == 2
        assert [handle.position for handle in handles] == [0, 1]
        assert all(handle.batch_id == batch.batch_id for handle in handles)
        assert processor.pending_count == 0
        assert await processor.drain() is None

        await processor._process_batch(batch=batch)

    assert all(handle.done() for handle in handles)
    assert fake_es.bulk_calls and len(fake_es.bulk_calls) == 1


@pytest.mark.asyncio
async def test_callbacks_receive_batch_and_response(cluster, fake_es):
    on_batch_start = Mock(side_effect=RuntimeError("callback bug"))
    on_batch_end = AsyncMock()

    async with BatchProcessor(
        cluster,
        count=None,
        interval_seconds=None,
        on_batch_start=on_batch_start,
        on_batch_end=on_batch_end,
    ) as processor:
        handle = await processor.put("orders", {}, id="1")
        await processor.flush()

    response = await handle
    on_batch_start.assert_called_once()
    on_batch_end.assert_awaited_once()
    batch, delivered = on_batch_end.await_args.args
    assert batch.handles == (handle,)
    assert delivered is response


@pytest.mark.asyncio
async def test_intake_capacity_derives_from_count(cluster):
    assert BatchProcessor(cluster, count=10).settings.intake_buffer_size == 20
    assert BatchProcessor(cluster, count=None).settings.intake_buffer_size == 1024
    assert BatchProcessor(cluster, count=10, buffer_size=3).settings.intake_buffer_size == 3


@pytest.mark.asyncio
async def test_enqueue_suspends_while_intake_is_full(cluster, fake_es):
    async with BatchProcessor(
        cluster, count=None, interval_seconds=None, buffer_size=1
    ) as processor:
        handles = await asyncio.gather(
            *(processor.enqueue(index_operation("orders", {}, id=str(n))) for n in range(5))
        )
        await processor.flush()

    assert len(handles) == 5
    (sent,) = ids_per_call(fake_es)
    assert sorted(sent) == ["0", "1", "2", "3", "4"]


@pytest.mark.asyncio
async def test_from_settings(cluster):
    processor = BatchProcessor.from_settings(
        cluster,
        BatchSettings(name="ingest", count=5, concurrency=2, interval_seconds=None),
    )

    assert processor.name == "ingest"
    assert processor.settings.count == 5
    assert processor.settings.concurrency == 2
    assert processor.settings.interval_seconds is None
