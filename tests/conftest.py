import os

import httpx
import pytest

from elastica.cluster import Cluster
from tests.mocks.elasticsearch import FakeElasticsearch, make_elasticsearch_transport


@pytest.fixture(autouse=True)
def clear_elastica_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("ELASTICA_"):
            monkeypatch.delenv(key)


@pytest.fixture
def fake_es() -> FakeElasticsearch:
    """
    Create an in-memory Elasticsearch fake.

    Returns
    -------
    FakeElasticsearch
        Fake API recording every request it receives.
    """
    return FakeElasticsearch()


@pytest.fixture
def cluster(fake_es: FakeElasticsearch) -> Cluster:
    """
    Create a Cluster whose HTTP client talks to the fake.

    Returns
    -------
    Cluster
        Cluster handle backed by a mock transport.
    """
    transport = make_elasticsearch_transport(api=fake_es)
    cluster = Cluster(hosts=[("es-test", 9200)])
    cluster._client_factory = lambda: httpx.AsyncClient(transport=transport)
    return cluster
