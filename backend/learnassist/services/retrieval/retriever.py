"""
Content retriever.

Grounding is best-effort: an unavailable or slow index yields an empty,
degraded result instead of an error, and retrieval is never retried.
An empty, non-degraded result is a normal answer ("nothing uploaded" or
"nothing relevant").
"""
import asyncio
from typing import List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from learnassist.core.config import get_settings
from learnassist.core.logging import get_logger
from learnassist.core.metrics import record_retrieval, record_retrieval_degraded
from learnassist.models.domain import ContentSource, RetrievalResult
from learnassist.services.retrieval.index import ContentIndex, SourceLike, SupabaseContentIndex

logger = get_logger(__name__)


def coerce_source(item: SourceLike) -> ContentSource:
    """Accept a ContentSource or a collaborator dict; clamp relevance into [0, 1]."""
    if isinstance(item, ContentSource):
        return item
    data = dict(item)
    score = float(data.get("relevance_score", data.get("relevanceScore", 0.0)) or 0.0)
    data["relevance_score"] = max(0.0, min(1.0, score))
    data.setdefault("document_id", data.pop("documentId", None))
    data.setdefault("chunk_id", data.pop("chunkId", None))
    return ContentSource.model_validate(data)


def rank_sources(sources: Sequence[ContentSource], limit: int) -> List[ContentSource]:
    """Highest relevance first; equal scores keep retrieval order (stable sort)."""
    ranked = sorted(sources, key=lambda source: source.relevance_score, reverse=True)
    return ranked[:limit]


class ContentRetriever:
    def __init__(
        self,
        index: Optional[ContentIndex] = None,
        timeout_seconds: Optional[float] = None,
        default_limit: Optional[int] = None,
    ):
        settings = get_settings()
        self.index = index if index is not None else SupabaseContentIndex()
        self.timeout_seconds = timeout_seconds or settings.retrieval_timeout_seconds
        self.default_limit = default_limit or settings.retrieval_limit

    async def retrieve(self, user_id: str, query: str, limit: Optional[int] = None) -> RetrievalResult:
        limit = self.default_limit if limit is None else limit
        if limit <= 0 or not query.strip():
            return RetrievalResult()

        try:
            raw = await asyncio.wait_for(
                self.index.retrieve_top_k(user_id, query, limit),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            record_retrieval_degraded("timeout")
            logger.warning("retrieval_timeout", timeout_seconds=self.timeout_seconds)
            return RetrievalResult(degraded=True, reason="timeout")
        except Exception as exc:
            record_retrieval_degraded("error")
            logger.warning(
                "retrieval_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return RetrievalResult(degraded=True, reason="error")

        sources = []
        for item in raw or []:
            try:
                sources.append(coerce_source(item))
            except (PydanticValidationError, TypeError, ValueError) as exc:
                logger.warning("retrieval_source_invalid", error=str(exc))

        ranked = rank_sources(sources, limit)
        record_retrieval(len(ranked))
        logger.info("retrieval_completed", source_count=len(ranked))
        return RetrievalResult(sources=ranked)
