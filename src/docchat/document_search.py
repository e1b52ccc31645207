"""Document search tool used by the chat's answer generator.

Resolves the user's document scope, runs hybrid search for the tool query and
the latest user message concurrently, and packages the merged passages as
citable context items plus answer instructions.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Protocol, Sequence

from supabase import create_client

from .errors import ProviderError, RetrievalError
from .pipeline import HybridSearcher, build_hybrid_searcher
from .schema import ContextItem, DocumentSearchOutput, Passage, RetrievalResult, SearchMetadata
from .settings import Settings
from .vector_store import MatchDocumentsIndex

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 40000  # ~10000 tokens
LISTED_DOCUMENTS = 10

NO_DOCUMENTS_INSTRUCTIONS = (
    "The user has no uploaded documents. Please let them know they need to upload "
    "documents first before you can search through them."
)

SEARCH_FAILED_INSTRUCTIONS = (
    "The document search failed. Tell the user the search could not be completed "
    "right now and ask them to try again."
)

ANSWER_INSTRUCTIONS = """
Based on the content from the found documents, provide a concise and accurate answer to the user's question.

IMPORTANT: Each time you use information from the documents, you must add a reference in Markdown link format:
[Short description](<?pdf=Document_title&p=X>)

Good examples of link text:
- [Section 12 of the law](<?pdf=Document_title&p=8>)
- [Figure 3.2](<?pdf=Document_title&p=15>)
- [Definition of the concept](<?pdf=Document_title&p=2>)

If no relevant information is found, inform the user and suggest rephrasing the question.
Answer in the same language as the user's question.

Found documents (sorted by relevance):
{listing}
"""


class DocumentScopeResolver(Protocol):
    async def get_document_ids(self, user_id: str) -> list[str]: ...


class SupabaseDocumentResolver:
    """Look up the ids of documents a user owns in the ``user_documents`` table."""

    def __init__(self, client, table: str = "user_documents"):
        self.client = client
        self.table = table

    def _fetch(self, user_id: str) -> list[dict]:
        response = self.client.table(self.table).select("id, title").eq("user_id", user_id).execute()
        return response.data or []

    async def get_document_ids(self, user_id: str) -> list[str]:
        try:
            rows = await asyncio.to_thread(self._fetch, user_id)
        except Exception as exc:  # noqa: BLE001 - any transport or SQL failure
            raise RetrievalError(f"Could not load documents for user: {exc}") from exc
        logger.debug("Found %d documents for user %s", len(rows), user_id)
        return [str(row["id"]) for row in rows]


def pdf_link(title: str, page: int) -> str:
    """Citation link understood by the chat renderer. The title is not escaped."""
    return f"<?pdf={title.strip()}&p={page}>"


def build_context_items(passages: Sequence[Passage], max_chars: int = MAX_CONTENT_CHARS) -> list[ContextItem]:
    return [
        ContextItem(
            title=passage.title,
            ai_title=passage.ai_title or None,
            page=passage.page,
            total_pages=passage.total_pages,
            content=(passage.text or "")[:max_chars],
            pdf_link=pdf_link(passage.title, passage.page),
            relevance_score=passage.rerank_score if passage.rerank_score is not None else passage.score,
        )
        for passage in passages
    ]


def build_instructions(context: Sequence[ContextItem], listed: int = LISTED_DOCUMENTS) -> str:
    """Answer instructions listing the top context items with relevance percentages."""
    listing = "\n".join(
        f"{idx + 1}. {item.ai_title or item.title} (page {item.page}) - "
        f"Relevance: {(item.relevance_score or 0) * 100:.1f}%"
        for idx, item in enumerate(context[:listed])
    )
    return ANSWER_INSTRUCTIONS.format(listing=listing)


def _empty_output(instructions: str, method: str) -> DocumentSearchOutput:
    return DocumentSearchOutput(
        instructions=instructions,
        context=[],
        search_metadata=SearchMetadata(total_results=0, search_method=method, reranking_applied=False),
    )


class DocumentSearchTool:
    """Search a user's uploaded documents and return citable context."""

    def __init__(self, searcher: HybridSearcher, resolver: DocumentScopeResolver):
        self.searcher = searcher
        self.resolver = resolver

    async def execute(self, user_id: str, query: str, user_message: str | None = None) -> DocumentSearchOutput:
        """Run the tool for one chat turn.

        Args:
            user_id: Authenticated user.
            query: Query text chosen by the answer generator.
            user_message: Raw latest user message, searched alongside ``query``.

        Returns:
            DocumentSearchOutput. Provider failures become a generic
            "try again" output rather than an exception.
        """
        logger.info("Document search for user %s", user_id)
        # Blank formulations cannot be embedded.
        queries = [text for text in (query, user_message) if text and text.strip()]

        try:
            document_ids = await self.resolver.get_document_ids(user_id)
            if not document_ids:
                logger.info("No documents found for user %s", user_id)
                return _empty_output(NO_DOCUMENTS_INSTRUCTIONS, "none")
            result: RetrievalResult = await self.searcher.multi_query_search(queries, user_id, document_ids)
        except ProviderError:
            logger.exception("Document search failed for user %s", user_id)
            return _empty_output(SEARCH_FAILED_INSTRUCTIONS, "error")

        context = build_context_items(result.passages)
        logger.info("Document search returned %d passages", len(context))
        return DocumentSearchOutput(
            instructions=build_instructions(context),
            context=context,
            search_metadata=SearchMetadata(
                total_results=len(context),
                search_method=result.search_method,
                reranking_applied=result.reranking_applied,
            ),
        )


def create_document_search(settings: Settings) -> DocumentSearchTool:
    """Build the tool against the hosted Supabase index and document table."""
    if not settings.supabase.url or not settings.supabase.key:
        raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set to create the document search tool.")
    client = create_client(settings.supabase.url, settings.supabase.key)
    searcher = build_hybrid_searcher(settings, MatchDocumentsIndex(client))
    return DocumentSearchTool(searcher=searcher, resolver=SupabaseDocumentResolver(client))
