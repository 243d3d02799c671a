"""
Vector Store Module

Tenant-partitioned storage and nearest-neighbour search for embeddings.
Supports three backends:
- memory: NumPy brute force, in-process (development and tests)
- faiss: Local flat inner-product indexes persisted to disk
- mongodb: MongoDB Atlas Vector Search for production

Every record is a (tenant, collection, item_id, vector, payload) tuple. Two
collections are used by the assistant:
- "faqs": one vector per FAQ entry
- "document_chunks": one vector per ingested document chunk

Query contract:
- Results are ordered by ascending cosine distance (0 = identical, 2 = opposite)
- A record whose distance is >= max_distance is excluded
- Payload filters are applied inside the store before the top-k cut, so the
  result size is bounded by k regardless of how many records are filtered out
- A query never sees records of another tenant
"""

import hashlib
import json
import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from config.settings import get_settings, VectorStoreConfig
from support_rag.embeddings import format_vector, parse_vector
from support_rag.exceptions import ValidationError

# Configure logging
logger = logging.getLogger(__name__)

FAQ_COLLECTION = "faqs"
CHUNK_COLLECTION = "document_chunks"

PayloadFilter = Dict[str, Any]


class SearchResult:
    """
    Represents a single search result.

    Attributes:
        item_id: Identifier of the stored entity (FAQ id, chunk id)
        distance: Cosine distance to the query (0-2, lower is better)
        payload: Data stored alongside the vector
        rank: Position in results (1-indexed)
    """

    def __init__(self, item_id: str, distance: float, payload: Dict[str, Any], rank: int = 0):
        self.item_id = item_id
        self.distance = distance
        self.payload = payload
        self.rank = rank

    def __repr__(self) -> str:
        return (
            f"SearchResult(item_id='{self.item_id}', "
            f"distance={self.distance:.4f}, rank={self.rank})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "distance": self.distance,
            "payload": self.payload,
            "rank": self.rank,
        }


def matches_filter(payload: Dict[str, Any], filter_dict: Optional[PayloadFilter]) -> bool:
    """Equality match of every filter field against the payload."""
    if not filter_dict:
        return True
    return all(payload.get(key) == value for key, value in filter_dict.items())


def _normalize(vector: Sequence[float]) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float32)
    norm = np.linalg.norm(arr)
    if norm == 0:
        return arr
    return arr / norm


class BaseVectorStore(ABC):
    """
    Abstract base class for vector stores.

    All implementations must provide:
    - upsert: Insert or replace one record
    - query: Nearest neighbours under a tenant, threshold and filter
    - delete / delete_where: Remove records
    - update_payload: Change payload fields of matching records
    - count: Number of records in a partition
    """

    def __init__(self, dimension: int):
        self.dimension = dimension

    def _validate_vector(self, vector: Sequence[float]) -> None:
        if len(vector) != self.dimension:
            raise ValidationError(
                f"Vector has {len(vector)} dimensions, store expects {self.dimension}"
            )

    @abstractmethod
    def upsert(
        self,
        tenant_id: str,
        collection: str,
        item_id: str,
        vector: Sequence[float],
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        pass

    @abstractmethod
    def query(
        self,
        tenant_id: str,
        collection: str,
        query_vector: Sequence[float],
        k: int,
        max_distance: float,
        filter_dict: Optional[PayloadFilter] = None,
    ) -> List[SearchResult]:
        pass

    @abstractmethod
    def delete(self, tenant_id: str, collection: str, item_ids: List[str]) -> int:
        pass

    @abstractmethod
    def delete_where(self, tenant_id: str, collection: str, filter_dict: PayloadFilter) -> int:
        pass

    @abstractmethod
    def update_payload(
        self,
        tenant_id: str,
        collection: str,
        filter_dict: PayloadFilter,
        updates: Dict[str, Any],
    ) -> int:
        pass

    @abstractmethod
    def count(self, tenant_id: str, collection: str) -> int:
        pass

    @abstractmethod
    def clear(self) -> None:
        """Remove all data from the store."""
        pass


class InMemoryVectorStore(BaseVectorStore):
    """
    Brute-force cosine search over NumPy arrays.

    Records are kept per (tenant, collection) partition; a query only ever
    scans the caller's partition.
    """

    def __init__(self, dimension: int):
        super().__init__(dimension)
        self._partitions: Dict[Tuple[str, str], Dict[str, Tuple[np.ndarray, Dict[str, Any]]]] = {}
        self._lock = threading.RLock()

        logger.info(f"InMemoryVectorStore initialized: dimension={dimension}")

    def upsert(self, tenant_id, collection, item_id, vector, payload=None) -> None:
        self._validate_vector(vector)
        with self._lock:
            partition = self._partitions.setdefault((tenant_id, collection), {})
            partition[str(item_id)] = (_normalize(vector), dict(payload or {}))

    def query(self, tenant_id, collection, query_vector, k, max_distance, filter_dict=None):
        if not query_vector or k <= 0:
            return []
        self._validate_vector(query_vector)

        with self._lock:
            partition = self._partitions.get((tenant_id, collection), {})
            rows = [
                (item_id, vector, payload)
                for item_id, (vector, payload) in partition.items()
                if matches_filter(payload, filter_dict)
            ]

        if not rows:
            return []

        matrix = np.vstack([vector for _, vector, _ in rows])
        distances = 1.0 - matrix @ _normalize(query_vector)
        distances = np.clip(distances, 0.0, 2.0)

        order = np.argsort(distances, kind="stable")
        results = []
        for idx in order:
            distance = float(distances[idx])
            if distance >= max_distance:
                break
            item_id, _, payload = rows[idx]
            results.append(SearchResult(item_id, distance, dict(payload), rank=len(results) + 1))
            if len(results) >= k:
                break

        logger.debug(f"Query on {tenant_id}/{collection} returned {len(results)} results")
        return results

    def delete(self, tenant_id, collection, item_ids) -> int:
        deleted = 0
        with self._lock:
            partition = self._partitions.get((tenant_id, collection), {})
            for item_id in item_ids:
                if partition.pop(str(item_id), None) is not None:
                    deleted += 1
        return deleted

    def delete_where(self, tenant_id, collection, filter_dict) -> int:
        with self._lock:
            partition = self._partitions.get((tenant_id, collection), {})
            doomed = [
                item_id for item_id, (_, payload) in partition.items()
                if matches_filter(payload, filter_dict)
            ]
            for item_id in doomed:
                del partition[item_id]
        return len(doomed)

    def update_payload(self, tenant_id, collection, filter_dict, updates) -> int:
        updated = 0
        with self._lock:
            partition = self._partitions.get((tenant_id, collection), {})
            for _, payload in partition.values():
                if matches_filter(payload, filter_dict):
                    payload.update(updates)
                    updated += 1
        return updated

    def count(self, tenant_id, collection) -> int:
        with self._lock:
            return len(self._partitions.get((tenant_id, collection), {}))

    def clear(self) -> None:
        with self._lock:
            self._partitions.clear()


class _FaissPartition:
    """One tenant/collection: a flat IP index plus ids, vectors and payloads."""

    def __init__(self, dimension: int):
        import faiss

        self.index = faiss.IndexFlatIP(dimension)
        self.ids: List[str] = []
        self.vectors: Dict[str, np.ndarray] = {}
        self.payloads: Dict[str, Dict[str, Any]] = {}
        self.dirty = False


class FAISSVectorStore(BaseVectorStore):
    """
    FAISS-based vector store for local deployments.

    Each tenant/collection gets its own IndexFlatIP over normalized vectors,
    so inner product equals cosine similarity. FAISS cannot update rows in
    place; replacements and deletions mark the partition dirty and the index
    is rebuilt before the next query.

    Persistence (when index_dir is set), per partition:
    - <hash>.index: the FAISS index
    - <hash>.json: tenant, collection, ids, payloads and vectors
    """

    def __init__(self, dimension: int, index_dir: Optional[str] = None):
        """
        Initialize FAISS vector store.

        Args:
            dimension: Embedding dimension (must match your model)
            index_dir: Directory to save/load partitions (optional)
        """
        super().__init__(dimension)
        self.index_dir = Path(index_dir) if index_dir else None
        self._partitions: Dict[Tuple[str, str], _FaissPartition] = {}
        self._lock = threading.RLock()

        try:
            import faiss  # noqa: F401
        except ImportError:
            raise ImportError(
                "faiss-cpu is required for FAISS vector store. "
                "Install with: pip install faiss-cpu"
            )

        if self.index_dir and self.index_dir.exists():
            self._load()

        logger.info(
            f"FAISSVectorStore initialized: dimension={dimension}, "
            f"index_dir={index_dir}"
        )

    def _partition(self, tenant_id: str, collection: str) -> _FaissPartition:
        key = (tenant_id, collection)
        if key not in self._partitions:
            self._partitions[key] = _FaissPartition(self.dimension)
        return self._partitions[key]

    def _rebuild_index(self, partition: _FaissPartition) -> None:
        """Rebuild the index (needed after replacements and deletions)."""
        import faiss

        logger.debug("Rebuilding FAISS index...")
        partition.index = faiss.IndexFlatIP(self.dimension)
        if partition.ids:
            matrix = np.vstack([partition.vectors[i] for i in partition.ids])
            partition.index.add(matrix)
        partition.dirty = False

    def upsert(self, tenant_id, collection, item_id, vector, payload=None) -> None:
        self._validate_vector(vector)
        item_id = str(item_id)
        normalized = _normalize(vector)

        with self._lock:
            partition = self._partition(tenant_id, collection)
            if item_id in partition.vectors:
                partition.dirty = True
            else:
                partition.ids.append(item_id)
                if not partition.dirty:
                    partition.index.add(normalized.reshape(1, -1))
            partition.vectors[item_id] = normalized
            partition.payloads[item_id] = dict(payload or {})
            self._save(tenant_id, collection)

    def query(self, tenant_id, collection, query_vector, k, max_distance, filter_dict=None):
        if not query_vector or k <= 0:
            return []
        self._validate_vector(query_vector)

        with self._lock:
            partition = self._partitions.get((tenant_id, collection))
            if partition is None or not partition.ids:
                return []
            if partition.dirty:
                self._rebuild_index(partition)

            # A flat index is exhaustive, so searching every row and applying
            # the filter while walking the ranking is equivalent to a pre-filter.
            total = partition.index.ntotal
            search_k = total if filter_dict else min(k, total)
            query = _normalize(query_vector).reshape(1, -1)
            scores, indices = partition.index.search(query, search_k)

            results = []
            for score, idx in zip(scores[0], indices[0]):
                if idx < 0:  # FAISS returns -1 for not found
                    continue
                distance = min(max(1.0 - float(score), 0.0), 2.0)
                if distance >= max_distance:
                    break
                item_id = partition.ids[idx]
                payload = partition.payloads[item_id]
                if not matches_filter(payload, filter_dict):
                    continue
                results.append(
                    SearchResult(item_id, distance, dict(payload), rank=len(results) + 1)
                )
                if len(results) >= k:
                    break

        logger.debug(f"FAISS query on {tenant_id}/{collection} returned {len(results)} results")
        return results

    def _remove(self, partition: _FaissPartition, item_ids: List[str]) -> int:
        removed = 0
        for item_id in item_ids:
            if item_id in partition.vectors:
                del partition.vectors[item_id]
                del partition.payloads[item_id]
                removed += 1
        if removed:
            partition.ids = [i for i in partition.ids if i in partition.vectors]
            partition.dirty = True
        return removed

    def delete(self, tenant_id, collection, item_ids) -> int:
        with self._lock:
            partition = self._partitions.get((tenant_id, collection))
            if partition is None:
                return 0
            removed = self._remove(partition, [str(i) for i in item_ids])
            if removed:
                self._save(tenant_id, collection)
            return removed

    def delete_where(self, tenant_id, collection, filter_dict) -> int:
        with self._lock:
            partition = self._partitions.get((tenant_id, collection))
            if partition is None:
                return 0
            doomed = [
                item_id for item_id, payload in partition.payloads.items()
                if matches_filter(payload, filter_dict)
            ]
            removed = self._remove(partition, doomed)
            if removed:
                self._save(tenant_id, collection)
            return removed

    def update_payload(self, tenant_id, collection, filter_dict, updates) -> int:
        updated = 0
        with self._lock:
            partition = self._partitions.get((tenant_id, collection))
            if partition is None:
                return 0
            for payload in partition.payloads.values():
                if matches_filter(payload, filter_dict):
                    payload.update(updates)
                    updated += 1
            if updated:
                self._save(tenant_id, collection)
        return updated

    def count(self, tenant_id, collection) -> int:
        with self._lock:
            partition = self._partitions.get((tenant_id, collection))
            return len(partition.ids) if partition else 0

    def clear(self) -> None:
        with self._lock:
            keys = list(self._partitions)
            self._partitions.clear()
            for tenant_id, collection in keys:
                self._save(tenant_id, collection)

        logger.info("FAISS store cleared")

    def _partition_path(self, tenant_id: str, collection: str) -> Path:
        digest = hashlib.md5(f"{tenant_id}\0{collection}".encode()).hexdigest()[:16]
        return self.index_dir / f"{collection}_{digest}"

    def _save(self, tenant_id: str, collection: str) -> None:
        """Save one partition's index and metadata to disk."""
        import faiss

        if not self.index_dir:
            return

        self.index_dir.mkdir(parents=True, exist_ok=True)
        base = self._partition_path(tenant_id, collection)
        partition = self._partitions.get((tenant_id, collection))

        if partition is None or not partition.ids:
            base.with_suffix(".index").unlink(missing_ok=True)
            base.with_suffix(".json").unlink(missing_ok=True)
            return

        if partition.dirty:
            self._rebuild_index(partition)

        faiss.write_index(partition.index, str(base.with_suffix(".index")))

        metadata = {
            "tenant_id": tenant_id,
            "collection": collection,
            "dimension": self.dimension,
            "ids": partition.ids,
            "payloads": partition.payloads,
            "vectors": {i: format_vector(partition.vectors[i]) for i in partition.ids},
        }
        with open(base.with_suffix(".json"), "w", encoding="utf-8") as f:
            json.dump(metadata, f)

        logger.debug(f"Saved FAISS partition {tenant_id}/{collection}")

    def _load(self) -> None:
        """Load every persisted partition from disk."""
        import faiss

        for metadata_path in self.index_dir.glob("*.json"):
            with open(metadata_path, "r", encoding="utf-8") as f:
                metadata = json.load(f)

            if metadata.get("dimension") != self.dimension:
                logger.warning(
                    f"Skipping {metadata_path.name}: dimension "
                    f"{metadata.get('dimension')} != {self.dimension}"
                )
                continue

            partition = _FaissPartition(self.dimension)
            partition.ids = list(metadata["ids"])
            partition.payloads = metadata["payloads"]
            partition.vectors = {
                i: np.asarray(parse_vector(v), dtype=np.float32)
                for i, v in metadata["vectors"].items()
            }

            index_path = metadata_path.with_suffix(".index")
            if index_path.exists():
                partition.index = faiss.read_index(str(index_path))
                partition.dirty = partition.index.ntotal != len(partition.ids)
            else:
                partition.dirty = True

            self._partitions[(metadata["tenant_id"], metadata["collection"])] = partition

        logger.info(f"Loaded {len(self._partitions)} FAISS partitions")


class MongoDBVectorStore(BaseVectorStore):
    """
    MongoDB Atlas Vector Store for production use.

    All records live in one collection; tenant, collection name and payload
    fields are declared as filter fields of the vector search index so they
    are applied as a pre-filter by Atlas.

    Atlas reports cosine similarity as score = (1 + cos) / 2, which is
    converted back to cosine distance as 2 - 2 * score.
    """

    def __init__(
        self,
        dimension: int,
        uri: Optional[str] = None,
        database: Optional[str] = None,
        collection: Optional[str] = None,
        vector_index: Optional[str] = None,
    ):
        """
        Initialize MongoDB Vector Store.

        Args:
            dimension: Embedding dimension
            uri: MongoDB connection URI (or from env)
            database: Database name
            collection: Collection name
            vector_index: Name of the vector search index
        """
        super().__init__(dimension)
        config = get_settings().vector_store

        self.uri = uri or config.mongodb_uri
        self.database_name = database or config.mongodb_database
        self.collection_name = collection or config.mongodb_collection
        self.vector_index = vector_index or config.mongodb_vector_index

        self._client = None
        self._db = None
        self._collection = None

        logger.info(
            f"MongoDBVectorStore initialized: db={self.database_name}, "
            f"collection={self.collection_name}"
        )

    def _connect(self):
        """Establish connection to MongoDB."""
        if self._collection is not None:
            return

        if not self.uri:
            raise ValueError(
                "MongoDB URI not configured. Set MONGODB_URI environment variable."
            )

        try:
            from pymongo import MongoClient
        except ImportError:
            raise ImportError(
                "pymongo is required for MongoDB. "
                "Install with: pip install 'pymongo[srv]'"
            )

        self._client = MongoClient(self.uri)
        self._db = self._client[self.database_name]
        self._collection = self._db[self.collection_name]

        # Test connection
        self._client.admin.command("ping")

        logger.info("Connected to MongoDB Atlas")

    @staticmethod
    def _record_id(tenant_id: str, collection: str, item_id: str) -> str:
        return f"{tenant_id}:{collection}:{item_id}"

    @staticmethod
    def _scope(tenant_id: str, collection: str, filter_dict: Optional[PayloadFilter] = None) -> Dict[str, Any]:
        scope = {"tenant_id": tenant_id, "collection": collection}
        for key, value in (filter_dict or {}).items():
            scope[f"payload.{key}"] = value
        return scope

    def upsert(self, tenant_id, collection, item_id, vector, payload=None) -> None:
        self._validate_vector(vector)
        self._connect()

        item_id = str(item_id)
        doc = {
            "_id": self._record_id(tenant_id, collection, item_id),
            "tenant_id": tenant_id,
            "collection": collection,
            "item_id": item_id,
            "embedding": [float(v) for v in vector],
            "payload": dict(payload or {}),
        }
        self._collection.replace_one({"_id": doc["_id"]}, doc, upsert=True)

    def query(self, tenant_id, collection, query_vector, k, max_distance, filter_dict=None):
        if not query_vector or k <= 0:
            return []
        self._validate_vector(query_vector)
        self._connect()

        prefilter = {
            "$and": [
                {field: {"$eq": value}}
                for field, value in self._scope(tenant_id, collection, filter_dict).items()
            ]
        }

        pipeline = [
            {
                "$vectorSearch": {
                    "index": self.vector_index,
                    "path": "embedding",
                    "queryVector": [float(v) for v in query_vector],
                    "numCandidates": k * 10,  # Over-fetch for recall
                    "limit": k,
                    "filter": prefilter,
                }
            },
            {
                "$project": {
                    "_id": 0,
                    "item_id": 1,
                    "payload": 1,
                    "score": {"$meta": "vectorSearchScore"},
                }
            },
        ]

        results = []
        for doc in self._collection.aggregate(pipeline):
            distance = min(max(2.0 - 2.0 * float(doc.get("score", 0.0)), 0.0), 2.0)
            if distance >= max_distance:
                continue
            results.append(SearchResult(
                item_id=doc["item_id"],
                distance=distance,
                payload=doc.get("payload", {}),
                rank=len(results) + 1,
            ))

        logger.debug(f"MongoDB search returned {len(results)} results")
        return results

    def delete(self, tenant_id, collection, item_ids) -> int:
        self._connect()
        ids = [self._record_id(tenant_id, collection, str(i)) for i in item_ids]
        result = self._collection.delete_many({"_id": {"$in": ids}})
        return result.deleted_count

    def delete_where(self, tenant_id, collection, filter_dict) -> int:
        self._connect()
        result = self._collection.delete_many(self._scope(tenant_id, collection, filter_dict))
        logger.info(f"Deleted {result.deleted_count} vectors from {tenant_id}/{collection}")
        return result.deleted_count

    def update_payload(self, tenant_id, collection, filter_dict, updates) -> int:
        self._connect()
        result = self._collection.update_many(
            self._scope(tenant_id, collection, filter_dict),
            {"$set": {f"payload.{key}": value for key, value in updates.items()}},
        )
        return result.modified_count

    def count(self, tenant_id, collection) -> int:
        self._connect()
        return self._collection.count_documents(self._scope(tenant_id, collection))

    def clear(self) -> None:
        self._connect()
        result = self._collection.delete_many({})
        logger.info(f"Cleared {result.deleted_count} documents from MongoDB")

    def create_vector_index(self) -> Dict[str, Any]:
        """
        Return the vector search index definition.

        Note: This usually needs to be created via Atlas UI or CLI.
        """
        index_definition = {
            "fields": [
                {
                    "type": "vector",
                    "path": "embedding",
                    "numDimensions": self.dimension,
                    "similarity": "cosine",
                },
                {"type": "filter", "path": "tenant_id"},
                {"type": "filter", "path": "collection"},
                {"type": "filter", "path": "payload.is_active"},
                {"type": "filter", "path": "payload.document_status"},
            ]
        }

        logger.info(
            f"To create the vector index '{self.vector_index}', "
            f"use the following definition in Atlas:\n"
            f"{json.dumps(index_definition, indent=2)}"
        )
        return index_definition


class VectorStore(BaseVectorStore):
    """
    Main Vector Store class with unified interface.

    This is the class that other components should use.
    It handles backend selection based on configuration.

    Example:
        store = VectorStore(dimension=1536)
        store.upsert("acme", FAQ_COLLECTION, "42", vector, {"is_active": True})
        results = store.query("acme", FAQ_COLLECTION, query_vector, k=3, max_distance=0.25)
    """

    def __init__(
        self,
        dimension: int,
        provider: Optional[str] = None,
        config: Optional[VectorStoreConfig] = None,
    ):
        """
        Initialize the vector store.

        Args:
            dimension: Embedding dimension
            provider: "memory", "faiss" or "mongodb" (default from config)
            config: Optional VectorStoreConfig
        """
        super().__init__(dimension)
        self.config = config or get_settings().vector_store

        provider = provider or self.config.provider

        if provider == "memory":
            self._store = InMemoryVectorStore(dimension=dimension)
        elif provider == "faiss":
            self._store = FAISSVectorStore(
                dimension=dimension,
                index_dir=self.config.faiss_index_dir,
            )
        elif provider == "mongodb":
            self._store = MongoDBVectorStore(
                dimension=dimension,
                uri=self.config.mongodb_uri,
                database=self.config.mongodb_database,
                collection=self.config.mongodb_collection,
                vector_index=self.config.mongodb_vector_index,
            )
        else:
            raise ValueError(f"Unknown vector store provider: {provider}")

        self._provider = provider
        logger.info(f"VectorStore initialized with {provider} backend")

    def upsert(self, tenant_id, collection, item_id, vector, payload=None) -> None:
        self._store.upsert(tenant_id, collection, item_id, vector, payload)

    def query(self, tenant_id, collection, query_vector, k, max_distance, filter_dict=None):
        return self._store.query(tenant_id, collection, query_vector, k, max_distance, filter_dict)

    def delete(self, tenant_id, collection, item_ids) -> int:
        return self._store.delete(tenant_id, collection, item_ids)

    def delete_where(self, tenant_id, collection, filter_dict) -> int:
        return self._store.delete_where(tenant_id, collection, filter_dict)

    def update_payload(self, tenant_id, collection, filter_dict, updates) -> int:
        return self._store.update_payload(tenant_id, collection, filter_dict, updates)

    def count(self, tenant_id, collection) -> int:
        return self._store.count(tenant_id, collection)

    def clear(self) -> None:
        self._store.clear()

    @property
    def provider(self) -> str:
        """Return the backend provider name."""
        return self._provider
