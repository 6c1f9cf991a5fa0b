"""
Tests for index administration.
"""

import json

import pytest

from elastica import index as es_index
from elastica.exceptions import HTTPError

ORDER_MAPPINGS = {"properties": {"total": {"type": "long"}}}


@pytest.mark.asyncio
async def test_index_exists(cluster, fake_es):
    assert await es_index.index_exists(cluster, "orders") is False
    fake_es.store(index="orders", id="1", source={})
    assert await es_index.index_exists(cluster, "orders") is True
    assert fake_es.requests[-1].method == "HEAD"


@pytest.mark.asyncio
async def test_create_index_sends_settings_and_mappings(cluster, fake_es):
    acknowledged = await es_index.create_index(cluster, "orders", mappings=ORDER_MAPPINGS)

    assert acknowledged is True
    assert json.loads(fake_es.requests[-1].content) == {
        "settings": {"number_of_shards": 5, "number_of_replicas": 1},
        "mappings": ORDER_MAPPINGS,
    }


@pytest.mark.asyncio
async def test_create_existing_index_raises(cluster, fake_es):
    await es_index.create_index(cluster, "orders", shards=1, replicas=0)

    with pytest.raises(HTTPError) as exc_info:
        await es_index.create_index(cluster, "orders")

    assert exc_info.value.status == 400
    assert exc_info.value.error_type == "resource_already_exists_exception"


@pytest.mark.asyncio
async def test_ensure_index_creates_only_once(cluster, fake_es):
    assert await es_index.ensure_index(cluster, "orders", mappings=ORDER_MAPPINGS) is True
    assert await es_index.ensure_index(cluster, "orders", mappings=ORDER_MAPPINGS) is False
    assert [request.method for request in fake_es.requests] == ["HEAD", "PUT", "HEAD"]


@pytest.mark.asyncio
async def test_ensure_index_tolerates_concurrent_creation(cluster, fake_es):
    original_handler = fake_es._handle_index

    def create_between_check_and_put(*, request, index):
        if request.method == "PUT":
            fake_es.store(index=index, id="seed", source={})
        return original_handler(request=request, index=index)

    fake_es._handle_index = create_between_check_and_put

    assert await es_index.ensure_index(cluster, "orders") is False


@pytest.mark.asyncio
async def test_delete_index(cluster, fake_es):
    fake_es.store(index="orders", id="1", source={})

    assert await es_index.delete_index(cluster, "orders") is True
    assert "orders" not in fake_es.indices

    with pytest.raises(HTTPError) as exc_info:
        await es_index.delete_index(cluster, "orders")
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_get_index(cluster, fake_es):
    await es_index.create_index(cluster, "orders", mappings=ORDER_MAPPINGS)

    details = await es_index.get_index(cluster, "orders")

    assert details["orders"]["mappings"] == ORDER_MAPPINGS


@pytest.mark.asyncio
async def test_get_index_of_several_indices(cluster, fake_es):
    await es_index.create_index(cluster, "orders", mappings=ORDER_MAPPINGS)
    await es_index.create_index(cluster, "refunds")

    details = await es_index.get_index(cluster, ["orders", "refunds"])

    assert fake_es.requests[-1].url.path == "/orders,refunds"
    assert sorted(details) == ["orders", "refunds"]
    assert details["refunds"]["mappings"] == {}


@pytest.mark.asyncio
async def test_put_mapping_and_read_it_back(cluster, fake_es):
    await es_index.create_index(cluster, "orders", mappings=ORDER_MAPPINGS)
    await es_index.create_index(cluster, "refunds")

    acknowledged = await es_index.put_mapping(
        cluster,
        ["orders", "refunds"],
        {"currency": {"type": "keyword"}},
    )
    mappings = await es_index.index_mappings(cluster, ["orders", "refunds"])

    assert acknowledged is True
    assert fake_es.requests[-2].url.path == "/orders,refunds/_mapping"
    assert mappings["orders"]["mappings"]["properties"] == {
        "total": {"type": "long"},
        "currency": {"type": "keyword"},
    }
    assert mappings["refunds"]["mappings"]["properties"] == {"currency": {"type": "keyword"}}
