"""
Configuration schemas for the retrieval backend.

This module defines Pydantic models for all configurable aspects of the
retrieval pipeline: hybrid search fusion, re-ranking, query processing,
and the embedding / language-model providers.
"""

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EmbeddingConfig(BaseModel):
    """Configuration for the embedding provider client."""

    model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model to use",
    )
    dimensions: int = Field(
        default=1536,
        ge=1,
        description="Embedding vector dimensions (all stored vectors must match)",
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        description="Maximum texts per provider call",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per provider call before giving up",
    )
    retry_delay: float = Field(
        default=1.0,
        ge=0.0,
        description="Initial backoff delay in seconds (doubled per retry)",
    )

    # Cache settings
    enable_cache: bool = Field(default=True)
    cache_max_size: int = Field(default=10000, ge=1)
    cache_ttl_seconds: float = Field(default=24 * 60 * 60, gt=0)


class LLMConfig(BaseModel):
    """Configuration for non-streaming chat completions."""

    model: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=2000, ge=1)


class HybridSearchConfig(BaseModel):
    """Configuration for keyword + vector fusion."""

    keyword_weight: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Weight for keyword search scores",
    )
    vector_weight: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Weight for vector search scores",
    )
    keyword_limit: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Number of keyword results to keep after local scoring",
    )
    vector_limit: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Number of nearest neighbours to fetch",
    )
    match_threshold: float = Field(
        default=0.0,
        ge=-1.0,
        le=1.0,
        description="Minimum similarity passed to the match_chunks RPC",
    )

    def validate_weights(self) -> "HybridSearchConfig":
        """Validate that weights sum to 1.0 so fused scores stay in [0, 1]."""
        total = self.vector_weight + self.keyword_weight
        if not (0.99 <= total <= 1.01):  # Allow small floating point error
            raise ValueError(f"Weights must sum to 1.0, got {total}")
        return self


class RerankingConfig(BaseModel):
    """Configuration for the re-ranking stage."""

    enabled: bool = Field(default=False)
    top_k_candidates: int = Field(
        default=30,
        ge=1,
        le=200,
        description="Number of candidates to re-rank",
    )
    top_k_results: int = Field(
        default=8,
        ge=1,
        le=100,
        description="Number of final results after re-ranking",
    )
    use_mmr: bool = Field(
        default=False,
        description="Apply Maximal Marginal Relevance for diversity",
    )
    mmr_lambda: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="MMR trade-off: 1 = pure relevance, 0 = pure diversity",
    )
    batch_size: int = Field(
        default=10,
        ge=1,
        description="Candidates scored per concurrent batch",
    )

    # Cache settings
    enable_cache: bool = Field(default=True)
    cache_max_size: int = Field(default=1000, ge=1)
    cache_ttl_seconds: float = Field(default=60 * 60, gt=0)


class QueryProcessingConfig(BaseModel):
    """Configuration for query expansion, rewriting and understanding."""

    enabled: bool = Field(default=False)
    enable_expansion: bool = Field(
        default=False,
        description="Generate related terms and synonyms",
    )
    enable_rewriting: bool = Field(
        default=False,
        description="Generate alternative phrasings",
    )
    enable_understanding: bool = Field(
        default=False,
        description="Classify intent and extract entities",
    )
    max_expansions: int = Field(default=5, ge=1, le=20)
    max_rewrites: int = Field(default=3, ge=1, le=10)

    # Cache settings
    enable_cache: bool = Field(default=True)
    cache_max_size: int = Field(default=500, ge=1)
    cache_ttl_seconds: float = Field(default=60 * 60, gt=0)


class RetrievalConfig(BaseModel):
    """Configuration for the full retrieval pipeline."""

    default_k: int = Field(
        default=8,
        ge=1,
        description="Number of passages returned when a request omits k",
    )
    use_query_variations: bool = Field(
        default=True,
        description="Fan hybrid search out over every query variation",
    )
    hybrid: HybridSearchConfig = Field(default_factory=HybridSearchConfig)
    reranking: RerankingConfig = Field(default_factory=RerankingConfig)
    query_processing: QueryProcessingConfig = Field(default_factory=QueryProcessingConfig)


class AppSettings(BaseSettings):
    """Application-wide settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API Keys
    openai_api_key: str | None = Field(default=None)

    # Supabase
    supabase_url: str | None = Field(default=None)
    supabase_service_key: str | None = Field(default=None)

    # Models
    openai_embeddings_model: str = Field(default="text-embedding-3-small")
    openai_model: str = Field(default="gpt-4o-mini")

    # Retrieval
    default_k: int = Field(default=8)

    # Hybrid search
    keyword_weight: float = Field(default=0.3)
    vector_weight: float = Field(default=0.7)

    # Re-ranking
    enable_reranking: bool = Field(default=False)
    reranking_top_k_candidates: int = Field(default=30)
    reranking_top_k_results: int = Field(default=8)
    enable_mmr: bool = Field(default=False)
    mmr_lambda: float = Field(default=0.5)

    # Query processing
    enable_query_processing: bool = Field(default=False)
    enable_query_expansion: bool = Field(default=False)
    enable_query_rewriting: bool = Field(default=False)
    enable_query_understanding: bool = Field(default=False)
    query_max_expansions: int = Field(default=5)
    query_max_rewrites: int = Field(default=3)

    # Application settings
    log_level: str = Field(default="INFO")

    def get_embedding_config(self) -> EmbeddingConfig:
        """Create EmbeddingConfig from environment settings."""
        return EmbeddingConfig(model=self.openai_embeddings_model)

    def get_llm_config(self) -> LLMConfig:
        """Create LLMConfig from environment settings."""
        return LLMConfig(model=self.openai_model)

    def get_retrieval_config(self) -> RetrievalConfig:
        """Create RetrievalConfig from environment settings."""
        return RetrievalConfig(
            default_k=self.default_k,
            hybrid=HybridSearchConfig(
                keyword_weight=self.keyword_weight,
                vector_weight=self.vector_weight,
            ),
            reranking=RerankingConfig(
                enabled=self.enable_reranking,
                top_k_candidates=self.reranking_top_k_candidates,
                top_k_results=self.reranking_top_k_results,
                use_mmr=self.enable_mmr,
                mmr_lambda=self.mmr_lambda,
            ),
            query_processing=QueryProcessingConfig(
                enabled=self.enable_query_processing,
                enable_expansion=self.enable_query_expansion,
                enable_rewriting=self.enable_query_rewriting,
                enable_understanding=self.enable_query_understanding,
                max_expansions=self.query_max_expansions,
                max_rewrites=self.query_max_rewrites,
            ),
        )


# Singleton instance for app settings
_settings: AppSettings | None = None


def get_settings() -> AppSettings:
    """Get the application settings singleton."""
    global _settings
    if _settings is None:
        _settings = AppSettings()
    return _settings
