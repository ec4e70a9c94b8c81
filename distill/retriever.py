"""Retriever and embedding provider interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from distill.types import RetrievalRequest, RetrievalResult


class RetrieverError(Exception):
    """Base class for retriever failures."""

    default_message = "retriever error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class NotFoundError(RetrieverError):
    """The requested item does not exist."""

    default_message = "not found"


class InvalidQueryError(RetrieverError):
    """The query has neither text nor an embedding."""

    default_message = "invalid query: must provide query text or embedding"


class ConnectionFailedError(RetrieverError):
    """The vector database could not be reached."""

    default_message = "connection to vector database failed"


class RateLimitedError(RetrieverError):
    """The vector database rejected the request as rate limited."""

    default_message = "rate limited by vector database"


class QueryTimeoutError(RetrieverError):
    """The query did not finish in time."""

    default_message = "query timeout"


class Retriever(ABC):
    """Query operations against a vector database."""

    @abstractmethod
    def query(self, request: RetrievalRequest) -> RetrievalResult:
        """Retrieve chunks similar to the request's embedding."""

    @abstractmethod
    def query_by_id(self, id: str, top_k: int, namespace: str) -> RetrievalResult:
        """Retrieve chunks similar to the stored vector with this id."""

    @abstractmethod
    def close(self) -> None:
        """Release any resources held by the retriever."""


class EmbeddingProvider(ABC):
    """A text embedding service."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Convert one text into an embedding."""

    @abstractmethod
    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Convert several texts into embeddings."""

    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimension."""

    @abstractmethod
    def model_name(self) -> str:
        """Return the name of the embedding model."""


@dataclass
class RetrieverWithEmbedding(Retriever):
    """A retriever that embeds text queries before searching."""

    retriever: Retriever
    embedder: Optional[EmbeddingProvider] = None

    def query(self, request: RetrievalRequest) -> RetrievalResult:
        """Embed the query text if needed, then delegate to the retriever."""
        if request.query and not request.query_embedding:
            if self.embedder is None:
                raise RetrieverError("embedding provider required for text queries")
            request.query_embedding = self.embedder.embed(request.query)

        if not request.query_embedding:
            raise InvalidQueryError()

        return self.retriever.query(request)

    def query_by_id(self, id: str, top_k: int, namespace: str) -> RetrievalResult:
        """Delegate to the underlying retriever."""
        return self.retriever.query_by_id(id, top_k, namespace)

    def close(self) -> None:
        """Close the underlying retriever."""
        self.retriever.close()


@dataclass
class RetrieverConfig:
    """Settings shared by retriever backends."""

    api_key: str = ""
    host: str = ""
    timeout_seconds: int = 30
    max_retries: int = 3
    default_namespace: str = ""