"""
Content-index collaborators.

`ContentIndex` is the interface the retriever consumes:
`retrieve_top_k(user_id, text, k)` returning ranked ContentSource items
(or plain dicts with the same fields).
"""
import asyncio
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from supabase import Client

from learnassist.core.database import get_supabase_client
from learnassist.core.logging import get_logger
from learnassist.models.domain import ContentSource, SourceMetadata
from learnassist.services.retrieval.scoring import RelevanceScorer, keyword_relevance

logger = get_logger(__name__)

SourceLike = Union[ContentSource, Dict[str, Any]]


class ContentIndex(Protocol):
    async def retrieve_top_k(self, user_id: str, text: str, k: int) -> Sequence[SourceLike]:
        ...


def source_metadata(raw: Optional[Dict[str, Any]]) -> SourceMetadata:
    raw = raw or {}
    page = raw.get("page", raw.get("pageNumber", raw.get("page_number")))
    return SourceMetadata(
        topic=raw.get("topic"),
        page=int(page) if page is not None else None,
        section=raw.get("section"),
    )


class SupabaseContentIndex:
    """
    Ranks the user's chunks from the `content_chunks` table.

    Rows: user_id, document_id, chunk_id, text, metadata (json).
    Chunks scoring zero are not returned.
    """

    def __init__(
        self,
        client: Optional[Client] = None,
        table: str = "content_chunks",
        scorer: RelevanceScorer = keyword_relevance,
        min_relevance: float = 0.0,
    ):
        self._client = client
        self.table = table
        self.scorer = scorer
        self.min_relevance = min_relevance

    @property
    def client(self) -> Optional[Client]:
        return self._client if self._client is not None else get_supabase_client()

    def _fetch_rows(self, user_id: str) -> List[Dict[str, Any]]:
        client = self.client
        if client is None:
            raise RuntimeError("Supabase client not configured")
        result = (
            client.table(self.table)
            .select("document_id, chunk_id, text, metadata")
            .eq("user_id", user_id)
            .execute()
        )
        return result.data or []

    async def retrieve_top_k(self, user_id: str, text: str, k: int) -> List[ContentSource]:
        rows = await asyncio.to_thread(self._fetch_rows, user_id)

        scored = []
        for row in rows:
            chunk_text = row.get("text") or ""
            score = max(0.0, min(1.0, float(self.scorer(text, chunk_text))))
            if score <= self.min_relevance:
                continue
            scored.append(ContentSource(
                document_id=str(row["document_id"]),
                chunk_id=str(row["chunk_id"]),
                text=chunk_text,
                relevance_score=score,
                metadata=source_metadata(row.get("metadata")),
            ))

        scored.sort(key=lambda source: source.relevance_score, reverse=True)
        logger.debug(
            "content_index_scored",
            table=self.table,
            candidates=len(rows),
            matched=len(scored),
        )
        return scored[:k]
