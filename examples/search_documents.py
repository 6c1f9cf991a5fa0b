#!/usr/bin/env python3
import asyncio

from dotenv import load_dotenv

from elastica import Cluster, Script, documents

load_dotenv()


async def main() -> None:
    """Write, update and search a couple of documents one request at a time."""
    cluster = Cluster.from_settings()

    await documents.put(cluster, "books", {"title": "Dune", "reads": 0}, id="dune")
    await documents.upsert(
        cluster,
        "books",
        "dune",
        {"title": "Dune", "reads": 1},
        Script(source="ctx._source.reads += params.by", params={"by": 1}),
        refresh=True,
    )

    doc = await documents.get(cluster, "books", "dune")
    if doc is not None:
        print(f"version {documents.doc_version(doc)}: {documents.doc_source(doc)}")

    response = await documents.search(cluster, "books", {"match": {"title": "dune"}}, size=5)
    for hit in documents.hits(response):
        print(f"{documents.doc_id(hit)} scored {documents.doc_score(hit)}")


if __name__ == "__main__":
    asyncio.run(main())
