"""
Query processing for retrieval.

This module provides:
- Conversational context folding for short or referential questions
- LLM-based query expansion, rewriting and intent understanding
- A processed-query cache keyed by (normalized query, role/level)

Every feature degrades independently: a provider or parse failure
simply leaves that feature's output absent.
"""

import asyncio
import json
import logging
import re
import time
from collections.abc import Sequence
from typing import get_args

from llm.completions import CompletionClient
from schemas.config import QueryProcessingConfig
from schemas.models import ChatMessage, ProcessedQuery, QueryIntent, QueryUnderstanding, UserContext
from storage.cache import TTLCache

logger = logging.getLogger(__name__)

QueryCache = TTLCache[tuple[str, str], ProcessedQuery]

PRONOUN_PATTERN = re.compile(r"\b(it|they|this|that|these|those|he|she|them)\b", re.IGNORECASE)
ENUMERATION_PATTERN = re.compile(r"^\s*(?:\d+\s*[.)]|[-*•])\s*")
VALID_INTENTS = set(get_args(QueryIntent))

SHORT_QUERY_WORDS = 5
CONTEXT_TURNS = 3


def create_query_cache(config: QueryProcessingConfig) -> QueryCache:
    """Build the processed-query cache for a given configuration."""
    return TTLCache(
        max_size=config.cache_max_size,
        ttl_seconds=config.cache_ttl_seconds,
        name="query processing cache",
    )


def query_cache_key(query: str, user_context: UserContext | None) -> tuple[str, str]:
    fingerprint = user_context.fingerprint if user_context else ""
    return query.strip().lower(), fingerprint


def enhance_with_context(
    query: str,
    conversation_history: Sequence[ChatMessage] | None,
) -> str:
    """
    Fold recent user turns into a short or referential query.

    If the query has fewer than five words or contains a pronoun such as
    "it" or "those", the last (up to) three user messages are prepended.

    Args:
        query: Incoming query
        conversation_history: Prior turns, oldest first

    Returns:
        The query, possibly prefixed with conversational context
    """
    if not conversation_history:
        return query

    recent_messages = [msg.content for msg in conversation_history if msg.role == "user"][-CONTEXT_TURNS:]
    if not recent_messages:
        return query

    has_pronouns = PRONOUN_PATTERN.search(query) is not None
    is_short = len(query.split()) < SHORT_QUERY_WORDS

    if has_pronouns or is_short:
        return f"{' '.join(recent_messages)} {query}"

    return query


def get_query_variations(processed: ProcessedQuery) -> list[str]:
    """
    List the queries downstream search should fan out over.

    Returns:
        ``[original, expanded?, *rewrites]`` without duplicates, the
        original query always first
    """
    variations = [processed.original_query]

    candidates = [processed.expanded_query, *processed.rewritten_queries]
    for candidate in candidates:
        if candidate and candidate not in variations:
            variations.append(candidate)

    return variations


def _user_preamble(user_context: UserContext | None) -> str:
    if user_context is None:
        return ""
    parts = []
    if user_context.role:
        parts.append(f"The user is a {user_context.role}. ")
    if user_context.level:
        parts.append(f"The user is at {user_context.level} level. ")
    return "".join(parts)


def parse_expansion_terms(response: str, max_expansions: int) -> list[str]:
    """Parse a comma-separated list of expansion terms."""
    terms = [term.strip().strip("\"'") for term in response.split(",")]
    return [term for term in terms if term][:max_expansions]


def parse_rewrites(response: str, max_rewrites: int) -> list[str]:
    """Parse newline-separated rewrites, stripping leading enumeration."""
    rewrites = []
    for line in response.splitlines():
        line = ENUMERATION_PATTERN.sub("", line).strip().strip("\"'").strip()
        if line:
            rewrites.append(line)
    return rewrites[:max_rewrites]


def extract_json_object(response: str) -> dict | None:
    """Return the first JSON object embedded in a response, if any."""
    decoder = json.JSONDecoder()
    for match in re.finditer(r"\{", response):
        try:
            value, _ = decoder.raw_decode(response, match.start())
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return value
    return None


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def parse_understanding(response: str) -> QueryUnderstanding | None:
    """Parse the structured classification returned by the model."""
    data = extract_json_object(response)
    if data is None:
        return None

    intent = data.get("intent")
    if intent not in VALID_INTENTS:
        intent = "unknown"

    required = data.get("requiredContentTypes", data.get("required_content_types"))

    return QueryUnderstanding(
        intent=intent,
        entities=_string_list(data.get("entities")),
        key_terms=_string_list(data.get("keyTerms", data.get("key_terms"))),
        required_content_types=_string_list(required) if isinstance(required, list) else None,
    )


class QueryProcessor:
    """
    Expands, rewrites and classifies queries before search.

    Language-model calls for the enabled features run concurrently; the
    composed result is cached per (normalized query, role/level).
    """

    def __init__(
        self,
        llm_client: CompletionClient,
        config: QueryProcessingConfig | None = None,
        cache: QueryCache | None = None,
    ):
        """
        Initialize the query processor.

        Args:
            llm_client: Client for non-streaming completions
            config: Query processing configuration
            cache: Shared processed-query cache (created from config if omitted)
        """
        self.llm_client = llm_client
        self.config = config or QueryProcessingConfig()
        self.cache = cache if cache is not None else create_query_cache(self.config)

    async def process_query(
        self,
        query: str,
        config: QueryProcessingConfig | None = None,
        user_context: UserContext | None = None,
        conversation_history: Sequence[ChatMessage] | None = None,
    ) -> ProcessedQuery:
        """
        Process a query with expansion, rewriting and understanding.

        Args:
            query: Incoming query
            config: Per-call override of the engine configuration
            user_context: Optional user role/level for prompts and caching
            conversation_history: Optional prior turns for context folding

        Returns:
            ProcessedQuery; never raises
        """
        config = config or self.config

        enhanced_query = enhance_with_context(query, conversation_history)
        if enhanced_query != query:
            logger.debug(f"Folded conversation context into query '{query[:100]}'")

        if not config.enabled:
            return ProcessedQuery(original_query=query)

        cache_key = query_cache_key(enhanced_query, user_context)
        if config.enable_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Query processing completed (cached): '{enhanced_query[:100]}'")
                return cached

        start_time = time.perf_counter()

        expanded_query, rewritten_queries, understanding = await asyncio.gather(
            self._expand_query(enhanced_query, user_context, config),
            self._rewrite_query(enhanced_query, user_context, config),
            self._understand_query(enhanced_query, config),
        )

        processed = ProcessedQuery(
            original_query=query,
            expanded_query=expanded_query,
            rewritten_queries=rewritten_queries,
            understanding=understanding,
        )

        if config.enable_cache:
            self.cache.set(cache_key, processed)

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            f"Query processing completed: '{enhanced_query[:100]}' "
            f"(expansion={expanded_query is not None}, rewrites={len(rewritten_queries)}, "
            f"understanding={understanding is not None}) in {elapsed_ms:.0f}ms"
        )

        return processed

    def clear_cache(self) -> None:
        """Clear the processed-query cache."""
        self.cache.clear()

    async def _expand_query(
        self,
        query: str,
        user_context: UserContext | None,
        config: QueryProcessingConfig,
    ) -> str | None:
        """Append related terms and synonyms to the query."""
        if not config.enable_expansion:
            return None

        prompt = f"""You are a search query expansion assistant. Generate related terms, synonyms, and contextually relevant phrases for the given query.

{_user_preamble(user_context)}
Original query: "{query}"

Generate {config.max_expansions} related terms, synonyms, or contextually relevant phrases that would help find relevant information.
- Focus on domain-specific terminology
- Include technical terms if relevant
- Include common synonyms
- Keep terms concise (1-3 words each)

Return ONLY a comma-separated list of terms, nothing else. Example: "term1, term2, term3\""""

        try:
            response = await self.llm_client.complete(prompt, temperature=0.7, max_tokens=200)
            terms = parse_expansion_terms(response or "", config.max_expansions)
        except Exception:
            logger.exception(f"Query expansion failed for '{query[:100]}'")
            return None

        if not terms:
            return None
        return f"{query} {' '.join(terms)}"

    async def _rewrite_query(
        self,
        query: str,
        user_context: UserContext | None,
        config: QueryProcessingConfig,
    ) -> list[str]:
        """Generate alternative phrasings of the query."""
        if not config.enable_rewriting:
            return []

        prompt = f"""You are a search query rewriting assistant. Rewrite the given query in {config.max_rewrites} different ways to improve search retrieval.

{_user_preamble(user_context)}
Original query: "{query}"

Generate {config.max_rewrites} alternative formulations of this query:
1. A more specific version
2. A more general version
3. A question-to-statement conversion (or vice versa)
4. Additional variations as needed

Each variation should:
- Preserve the core intent
- Use different wording
- Be optimized for information retrieval
- Be concise (under 20 words)

Return ONLY the rewritten queries, one per line, with no numbering or labels."""

        try:
            response = await self.llm_client.complete(prompt, temperature=0.8, max_tokens=300)
            return parse_rewrites(response or "", config.max_rewrites)
        except Exception:
            logger.exception(f"Query rewriting failed for '{query[:100]}'")
            return []

    async def _understand_query(
        self,
        query: str,
        config: QueryProcessingConfig,
    ) -> QueryUnderstanding | None:
        """Classify intent and extract entities and key terms."""
        if not config.enable_understanding:
            return None

        prompt = f"""You are a query understanding assistant. Analyze the given query to determine its intent and extract key information.

Query: "{query}"

Analyze the query and provide:
1. Intent type (one of: factual, how-to, comparison, definition, list, unknown)
2. Key entities and concepts (important nouns, topics, subjects)
3. Important search terms (keywords that should be prioritized)

Return your analysis in this exact JSON format:
{{
  "intent": "factual|how-to|comparison|definition|list|unknown",
  "entities": ["entity1", "entity2"],
  "keyTerms": ["term1", "term2"],
  "requiredContentTypes": ["optional", "content", "types"]
}}

Only return the JSON, nothing else."""

        try:
            response = await self.llm_client.complete(prompt, temperature=0.3, max_tokens=300)
            return parse_understanding(response or "")
        except Exception:
            logger.exception(f"Query understanding failed for '{query[:100]}'")
            return None
