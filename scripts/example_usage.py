#!/usr/bin/env python3
"""Example script for using the knowledge-graph retrieval layer."""

import asyncio

from kgrag.core import (
    get_graph_builder,
    get_graph_registry,
    get_query_engine,
    get_snapshot_repository,
    setup_logging,
)
from kgrag.domain import ScoringWeights

SAMPLE_CHUNKS = [
    "Paris is the capital of France. The Eiffel Tower stands in Paris.",
    "Berlin is the capital of Germany. The Brandenburg Gate is a landmark in Berlin.",
    "France and Germany are founding members of the European Union.",
]

ASIA_CHUNKS = [
    "Tokyo is the capital of Japan.",
]


async def main():
    """Run example usage."""
    setup_logging()
    print("Knowledge Graph Retrieval Example\n" + "=" * 50)

    registry = get_graph_registry()
    graph = registry.get_or_create("example")

    graph_builder = await get_graph_builder()
    query_engine = await get_query_engine()
    snapshots = await get_snapshot_repository()

    # Example 1: Build the graph
    print("\n1. Building the knowledge graph...")
    stats = await graph_builder.rebuild(
        graph, SAMPLE_CHUNKS, metadata={"documentId": "europe", "documentName": "europe.txt"}
    )
    stats = await graph_builder.process_chunks(
        graph, ASIA_CHUNKS, metadata={"documentId": "asia", "documentName": "asia.txt"}
    )
    print(f"✓ {stats.total_chunks} chunks, {stats.total_entities} entities, "
          f"{stats.total_relationships} relationships")

    # Example 2: Rank chunks for a query
    print("\n2. Selecting relevant chunks...")
    query = "What is the capital of France?"
    selection = await query_engine.selector.select_relevant_chunks(query, graph, max_chunks=2)
    for chunk in selection.chunks:
        print(f"  [{chunk.chunk_id}] total={chunk.total_score:.3f} {chunk.scores.model_dump()}")

    # Example 3: Same query with semantic-heavy weights
    print("\n3. Selecting with custom weights...")
    weights = ScoringWeights(semantic=0.6, entity=0.3, relationship=0.1, position=0.0)
    selection = await query_engine.selector.select_relevant_chunks(
        query, graph, max_chunks=2, weights=weights
    )
    print(f"✓ Top chunk: {selection.chunks[0].chunk_id if selection.chunks else 'none'}")

    # Example 4: Answer the query
    print("\n4. Answering the query...")
    response = await query_engine.query(query, graph, document_ids=["europe"])
    print(f"Answer: {response.answer}")
    if response.metadata.get("reason"):
        print(f"Reason: {response.metadata['reason']}")
    for citation in response.metadata.get("citations", []):
        print(f"  {citation}")

    # Example 5: Snapshot round trip
    print("\n5. Saving and reloading a snapshot...")
    path = await snapshots.save(graph, "example")
    restored = await snapshots.load("example")
    print(f"✓ Saved to {path}, reloaded {restored.entity_count} entities")

    print("\n" + "=" * 50)
    print("Example completed successfully!")


if __name__ == "__main__":
    asyncio.run(main())
