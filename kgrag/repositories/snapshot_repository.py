"""File-based snapshot persistence for knowledge graphs."""

import asyncio
import re
from pathlib import Path
from typing import Union

from loguru import logger
from pydantic import ValidationError

from kgrag.domain import GraphSnapshot
from kgrag.exceptions import SnapshotError
from kgrag.repositories.knowledge_graph import KnowledgeGraph

SNAPSHOT_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class GraphSnapshotRepository:
    """Repository storing graph snapshots as JSON files in one directory."""

    def __init__(self, directory: Union[str, Path]) -> None:
        """Initialize snapshot repository."""
        self.directory = Path(directory)
        logger.info(f"Initialized GraphSnapshotRepository at {self.directory}")

    def _path_for(self, name: str) -> Path:
        if not SNAPSHOT_NAME_PATTERN.match(name) or name in (".", ".."):
            raise SnapshotError(f"Invalid snapshot name: {name!r}")
        return self.directory / f"{name}.json"

    async def save(self, graph: KnowledgeGraph, name: str) -> Path:
        """Write a snapshot of the graph and return its path."""
        path = self._path_for(name)
        payload = graph.to_snapshot().model_dump_json(by_alias=True, indent=2)

        def _write() -> None:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(path)

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            logger.error(f"Error saving snapshot {name}: {e}")
            raise SnapshotError(f"Could not write snapshot {name!r}: {e}") from e

        logger.info(
            f"Saved snapshot {name} ({graph.entity_count} entities, {graph.chunk_count} chunks, "
            f"{graph.relationship_count} relationships)"
        )
        return path

    async def load(self, name: str, strict_references: bool = False) -> KnowledgeGraph:
        """Read a snapshot back into a new graph."""
        path = self._path_for(name)

        try:
            payload = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError as e:
            raise SnapshotError(f"Snapshot {name!r} not found") from e
        except OSError as e:
            logger.error(f"Error reading snapshot {name}: {e}")
            raise SnapshotError(f"Could not read snapshot {name!r}: {e}") from e

        try:
            snapshot = GraphSnapshot.model_validate_json(payload)
        except ValidationError as e:
            logger.error(f"Invalid snapshot {name}: {e}")
            raise SnapshotError(f"Snapshot {name!r} is invalid") from e

        return KnowledgeGraph.from_snapshot(snapshot, strict_references=strict_references)

    async def exists(self, name: str) -> bool:
        """Check whether a snapshot exists."""
        return await asyncio.to_thread(self._path_for(name).is_file)

    async def delete(self, name: str) -> bool:
        """Delete a snapshot, returning False if it did not exist."""
        path = self._path_for(name)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        logger.info(f"Deleted snapshot {name}")
        return True

    async def list_snapshots(self) -> list[str]:
        """List stored snapshot names."""

        def _list() -> list[str]:
            if not self.directory.is_dir():
                return []
            return sorted(p.stem for p in self.directory.glob("*.json"))

        return await asyncio.to_thread(_list)
