"""Vector store holding one embedding per order."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI

from omsassist.models import VectorMatch, VectorRecord

VECTOR_ID_PREFIX = "order-"


def vector_id(job_number: str) -> str:
    return f"{VECTOR_ID_PREFIX}{job_number}"


def job_number_from_id(record_id: str) -> str:
    return record_id[len(VECTOR_ID_PREFIX) :] if record_id.startswith(VECTOR_ID_PREFIX) else record_id


class OrderVectorStore(Protocol):
    """Protocol for order vector persistence backends."""

    def upsert(self, records: Sequence[VectorRecord]) -> Sequence[str]:
        """Persist the records, replacing any with the same id."""

    def delete(self, ids: Sequence[str]) -> None:
        """Remove the given vector ids."""

    def query(
        self,
        vector: Sequence[float],
        *,
        top_k: int = 10,
        where: Mapping[str, Any] | None = None,
    ) -> Sequence[VectorMatch]:
        """Return nearest neighbours, best first."""

    def reset(self) -> None:
        """Remove all stored vectors."""

    def count(self) -> int:
        """Return total number of stored vectors."""

    def snapshot(self) -> Mapping[str, Mapping[str, Any]]:
        """Return ``{id: metadata}`` for every stored vector."""


class ChromaOrderStore:
    """Chroma-backed order vector store (cosine space)."""

    def __init__(
        self,
        collection_name: str = "oms-orders",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection_name = collection_name
        self._collection = self._open_collection()

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def upsert(self, records: Sequence[VectorRecord]) -> Sequence[str]:
        if not records:
            return []
        ids = [record.id for record in records]
        self._collection.upsert(
            ids=ids,
            embeddings=[list(record.embedding) for record in records],
            documents=[record.document for record in records],
            metadatas=[dict(record.metadata) for record in records],
        )
        return ids

    def delete(self, ids: Sequence[str]) -> None:
        if ids:
            self._collection.delete(ids=list(ids))

    def query(
        self,
        vector: Sequence[float],
        *,
        top_k: int = 10,
        where: Mapping[str, Any] | None = None,
    ) -> Sequence[VectorMatch]:
        available = self.count()
        if top_k <= 0 or available == 0:
            return []
        results = self._collection.query(
            query_embeddings=[list(vector)],
            n_results=min(top_k, available),
            where=dict(where) if where else None,
            include=["metadatas", "documents", "distances"],
        )
        return self._deserialize_results(results)

    def reset(self) -> None:
        self._client.delete_collection(self._collection_name)
        self._collection = self._open_collection()

    def count(self) -> int:
        return int(self._collection.count())

    def snapshot(self) -> Mapping[str, Mapping[str, Any]]:
        records: dict[str, Mapping[str, Any]] = {}
        # paginate through metadatas only
        limit = 1000
        offset = 0
        while True:
            batch = self._collection.get(include=["metadatas"], limit=limit, offset=offset)
            ids = batch.get("ids") or []
            metadatas = batch.get("metadatas") or []
            for record_id, metadata in zip(ids, metadatas):
                records[record_id] = dict(metadata or {})
            # if fewer than limit, last page
            if len(ids) < limit:
                break
            offset += limit
        return records

    def _open_collection(self):
        return self._client.get_or_create_collection(
            name=self._collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    def _deserialize_results(self, results: Mapping[str, object]) -> Sequence[VectorMatch]:
        ids = self._first(results.get("ids"))
        metadatas = self._first(results.get("metadatas"))
        documents = self._first(results.get("documents"))
        distances = self._first(results.get("distances"))
        matches: list[VectorMatch] = []
        for index, record_id in enumerate(ids):
            metadata = metadatas[index] if index < len(metadatas) else {}
            document = documents[index] if index < len(documents) else ""
            distance = distances[index] if index < len(distances) else None
            score = 1.0 - float(distance) if distance is not None else 0.0
            job_number = str((metadata or {}).get("jobNumber") or job_number_from_id(record_id))
            matches.append(
                VectorMatch(job_number=job_number, score=score, metadata=dict(metadata or {}), document=document or "")
            )
        return matches

    @staticmethod
    def _first(value: object) -> list:
        if isinstance(value, list) and value:
            first = value[0]
            return list(first) if isinstance(first, Iterable) and not isinstance(first, (str, bytes)) else []
        return []


__all__ = ["ChromaOrderStore", "OrderVectorStore", "job_number_from_id", "vector_id"]
