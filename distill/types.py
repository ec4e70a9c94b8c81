"""Core data types: chunks, vectors, clusters and processing results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class Chunk:
    """A retrieved document chunk with its embedding and relevance score."""

    id: str = ""
    text: str = ""
    embedding: list[float] = field(default_factory=list)
    score: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)
    cluster_id: int = -1

    def dimension(self) -> int:
        """Return the embedding dimensionality."""
        return len(self.embedding)

    def clone(self) -> Chunk:
        """Return a copy that shares no mutable state with this chunk."""
        return Chunk(
            id=self.id,
            text=self.text,
            embedding=list(self.embedding),
            score=self.score,
            metadata=dict(self.metadata),
            cluster_id=self.cluster_id,
        )


@dataclass
class RetrievalRequest:
    """A query to a vector database."""

    query: str = ""
    query_embedding: list[float] = field(default_factory=list)
    top_k: int = 0
    namespace: str = ""
    filter: dict[str, Any] = field(default_factory=dict)
    include_embeddings: bool = False
    include_metadata: bool = False


@dataclass
class RetrievalResult:
    """The output of a vector database query; latency is in seconds."""

    chunks: list[Chunk] = field(default_factory=list)
    query_embedding: list[float] = field(default_factory=list)
    total_matches: int = 0
    latency: float = 0.0


@dataclass
class Cluster:
    """A group of semantically similar chunks."""

    id: int = 0
    members: list[Chunk] = field(default_factory=list)
    centroid: list[float] = field(default_factory=list)
    representative: Optional[Chunk] = None

    def size(self) -> int:
        """Return the number of members in the cluster."""
        return len(self.members)


@dataclass
class ClusterResult:
    """The output of clustering; latency is in seconds."""

    clusters: list[Cluster] = field(default_factory=list)
    representatives: list[Chunk] = field(default_factory=list)
    input_count: int = 0
    cluster_count: int = 0
    latency: float = 0.0

    def reduction_percent(self) -> float:
        """Return the percentage of input chunks that were removed."""
        if self.input_count == 0:
            return 0.0
        removed = self.input_count - len(self.representatives)
        return removed / self.input_count * 100


@dataclass
class BrokerStats:
    """Broker operation metrics; latencies are in seconds."""

    retrieved: int = 0
    clustered: int = 0
    returned: int = 0
    retrieval_latency: float = 0.0
    clustering_latency: float = 0.0
    total_latency: float = 0.0


@dataclass
class BrokerResult:
    """The final deduplicated, diverse chunks and how they were produced."""

    chunks: list[Chunk] = field(default_factory=list)
    stats: BrokerStats = field(default_factory=BrokerStats)


@dataclass
class Vector:
    """A vector embedding with identifier and metadata."""

    id: str = ""
    values: list[float] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def dimension(self) -> int:
        """Return the dimensionality of the vector."""
        return len(self.values)

    def clone(self) -> Vector:
        """Return a copy that shares no mutable state with this vector."""
        return Vector(id=self.id, values=list(self.values), metadata=dict(self.metadata))


@dataclass
class VectorBatch:
    """A batch of vectors for bulk operations."""

    vectors: list[Vector] = field(default_factory=list)


@dataclass
class DeduplicationResult:
    """The output of deduplicating a set of vectors."""

    unique_vectors: list[Vector] = field(default_factory=list)
    duplicate_count: int = 0
    total_processed: int = 0
    cluster_count: int = 0
    processing_time_ms: int = 0

    def savings_percent(self) -> float:
        """Return the percentage of processed vectors that were duplicates."""
        if self.total_processed == 0:
            return 0.0
        return self.duplicate_count / self.total_processed * 100


@dataclass
class IngestionStats:
    """Ingestion pipeline metrics."""

    total_vectors: int = 0
    uploaded_vectors: int = 0
    failed_vectors: int = 0
    batches_processed: int = 0
    retry_count: int = 0
    duration_ms: int = 0

    def success_rate(self) -> float:
        """Return the percentage of vectors that were uploaded."""
        if self.total_vectors == 0:
            return 0.0
        return self.uploaded_vectors / self.total_vectors * 100