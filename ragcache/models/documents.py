"""Document and cache entry models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ragcache.core.errors import ValidationError
from ragcache.filters.expressions import And, Equality, FilterExpression, Or
from ragcache.filters.translator import ScopeKey


class Document(BaseModel):
    """Document model."""
    id: str = Field(..., description="Globally unique document ID")
    content: str = Field(..., description="Document text content")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Scalar metadata")
    embedding: Optional[List[float]] = Field(None, description="Document embedding vector")
    score: Optional[float] = Field(None, description="Relevance score")


class CacheEntry(BaseModel):
    """One vector index entry.

    Metadata values must be strings: the cache's predicate engine only
    matches flat, string-valued fields.
    """
    key: str = Field(..., description="Document ID")
    vector: List[float] = Field(..., description="Embedding vector")
    metadata: Dict[str, str] = Field(default_factory=dict, description="Flattened metadata")

    def to_wire(self) -> Dict[str, Any]:
        return {"key": self.key, "vector": self.vector, "metadata": self.metadata}


@dataclass(frozen=True)
class SearchRequest:
    """Similarity search request.

    ``query_vector`` carries a precomputed embedding of ``query``; stores
    embed the text themselves only when it is None.
    """

    query: str
    top_k: int = 5
    similarity_threshold: float = 0.0
    filter_expression: Optional[FilterExpression] = None
    query_vector: Optional[List[float]] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.top_k, int) or isinstance(self.top_k, bool) or self.top_k <= 0:
            raise ValidationError("top_k must be a positive integer", field="top_k", value=self.top_k)
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise ValidationError(
                "similarity_threshold must be between 0 and 1",
                field="similarity_threshold",
                value=self.similarity_threshold,
            )
        if self.filter_expression is not None and not isinstance(self.filter_expression, (Equality, And, Or)):
            raise ValidationError(
                "filter_expression must be an Equality, And or Or",
                field="filter_expression",
                value=self.filter_expression,
            )


@dataclass
class ScopeRow:
    """Raw primary row as read for warming.

    ``metadata`` is whatever the store returned: JSON text, an already
    decoded dict, or None.
    """

    id: str
    content: str
    metadata: Any
    embedding: List[float] = field(default_factory=list)


@dataclass
class WarmingResult:
    """Outcome of one warming run."""

    documents_warmed: int
    success: bool
    scope: Optional[ScopeKey] = None
    duration_ms: float = 0.0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "documents_warmed": self.documents_warmed,
            "success": self.success,
            "scope": str(self.scope) if self.scope else None,
            "duration_ms": round(self.duration_ms, 2),
            "error": self.error,
        }


def decode_metadata(raw: Any) -> Dict[str, Any]:
    """Best-effort decode of a stored metadata value for display.

    Unparsable text is kept under the ``metadata`` key instead of being
    dropped.
    """
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return dict(raw)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        try:
            decoded = json.loads(raw)
        except ValueError:
            return {"metadata": raw}
        if isinstance(decoded, dict):
            return decoded
    return {"metadata": str(raw)}
