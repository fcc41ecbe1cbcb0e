"""Application configuration using Pydantic Settings."""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are validated at startup. Missing required settings
    or invalid values will cause the application to fail fast with
    clear error messages.
    """

    # API Settings
    api_title: str = Field(default="Fastener Catalogue Search", description="API title")
    api_version: str = Field(default="1.0.0", description="API version")
    company_name: str = Field(
        default="Inoxbolt",
        description="Distributor name used in the chat assistant prompt",
    )

    # LLM Settings
    openai_api_key: str | None = Field(default=None, description="OpenAI API key")
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="OpenAI model for chat completions",
    )
    openai_embedding_model: str = Field(
        default="text-embedding-3-small",
        description="OpenAI model for text embeddings",
    )
    openai_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Timeout in seconds for OpenAI requests",
    )

    # Vector Database Settings
    vector_db_path: str = Field(
        default="./data/vectordb",
        description="Path to vector database storage",
    )
    collection_name: str = Field(
        default="catalogue_chunks",
        min_length=1,
        description="Collection name for catalogue chunks",
    )

    # Lexical index
    enable_keyword_search: bool = Field(
        default=True,
        description="Run BM25 keyword search next to vector search",
    )
    bm25_index_path: Path = Field(
        default=Path("./data/vectordb/bm25_index.pkl"),
        description="File the BM25 index is persisted to",
    )
    bm25_k1: float = Field(
        default=1.5,
        ge=0.0,
        description="BM25 k1 parameter (term frequency saturation)",
    )
    bm25_b: float = Field(
        default=0.75,
        ge=0.0,
        le=1.0,
        description="BM25 b parameter (length normalization)",
    )

    # Logging Settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # Search Settings
    default_limit: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Number of results returned when the request sets no limit",
    )
    max_limit: int = Field(
        default=50,
        ge=1,
        le=200,
        description="Largest limit a search request may ask for",
    )
    candidate_multiplier: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Candidates fetched per requested result, for reranking",
    )
    default_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Minimum vector similarity for descriptive queries",
    )
    exact_standard_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Looser similarity threshold used for exact-standard queries",
    )
    enable_attribute_filters: bool = Field(
        default=True,
        description="Filter the vector search on attributes extracted from the query",
    )
    min_filtered_results: int = Field(
        default=3,
        ge=0,
        description="Widen the vector search when a filtered search returns fewer candidates",
    )

    # Hybrid scoring
    exact_match_boost: float = Field(
        default=2.0,
        gt=0.0,
        description="Score added to exact standard matches",
    )
    direct_match_boost: float = Field(
        default=1.5,
        gt=0.0,
        description="Extra score for the query code itself over a declared equivalent",
    )
    thread_match_boost: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Score added when the thread designation matches",
    )
    material_match_boost: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Score added when the material matches",
    )
    product_type_match_boost: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Score added when the product type matches",
    )
    head_type_match_boost: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Score added when the head type matches",
    )
    supplier_match_boost: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Score added when the supplier named in the query matches",
    )
    wrong_standard_penalty: float = Field(
        default=0.15,
        ge=0.0,
        le=1.0,
        description="Score removed from a similar but different standard (DIN 931 for DIN 933)",
    )
    min_exact_matches: int = Field(
        default=3,
        ge=1,
        description="Exact matches needed before non-exact results are dropped",
    )
    non_exact_fallback: int = Field(
        default=5,
        ge=0,
        description="Non-exact results kept behind a short list of exact matches",
    )
    score_scale: int = Field(
        default=100,
        ge=1,
        description="Scale of the score reported by the API (100 = percent)",
    )
    snippet_length: int = Field(
        default=200,
        ge=20,
        description="Characters of content shown in a result snippet",
    )

    # Chat assistant
    chat_context_chunks: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Catalogue chunks passed to the assistant as context",
    )
    chat_history_messages: int = Field(
        default=10,
        ge=0,
        le=50,
        description="Previous chat turns forwarded to the LLM",
    )
    chat_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature of the chat assistant",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(
                f"log_level must be one of {valid_levels}, got '{v}'"
            )
        return v_upper

    @field_validator("openai_api_key")
    @classmethod
    def validate_api_key(cls, v: str | None) -> str | None:
        """Ensure API key is not empty and has reasonable format if provided."""
        if v is None:
            return v
        if v.strip() == "":
            raise ValueError("openai_api_key cannot be empty string")
        if v == "your-openai-api-key-here":
            raise ValueError(
                "openai_api_key must be set to a valid API key, "
                "not the placeholder value"
            )
        # OpenAI keys typically start with 'sk-'
        if not v.startswith("sk-"):
            raise ValueError(
                "openai_api_key should start with 'sk-' "
                "(OpenAI API key format)"
            )
        return v

    @field_validator("bm25_index_path", mode="before")
    @classmethod
    def validate_bm25_index_path(cls, v) -> Path:
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v

    @property
    def max_secondary_boost(self) -> float:
        """Largest score a result can collect from attribute matches."""
        return (
            self.thread_match_boost
            + self.material_match_boost
            + self.product_type_match_boost
            + self.head_type_match_boost
            + self.supplier_match_boost
        )

    @property
    def max_hybrid_score(self) -> float:
        """Highest hybrid score a result can reach (used to scale API scores)."""
        return 1.0 + self.max_secondary_boost + self.exact_match_boost + self.direct_match_boost

    def model_post_init(self, __context) -> None:
        """Additional validation after model initialization."""
        # An exact standard match with similarity 0 must still outrank a
        # non-exact match with similarity 1 and every attribute boost.
        if self.exact_match_boost <= 1.0 + self.max_secondary_boost:
            raise ValueError(
                f"exact_match_boost ({self.exact_match_boost}) must be greater than "
                f"1.0 + attribute boosts ({1.0 + self.max_secondary_boost:.2f})"
            )

        # Same bound one tier up: DIN 933 must outrank ISO 4017 for a DIN 933 query.
        if self.direct_match_boost <= 1.0 + self.max_secondary_boost:
            raise ValueError(
                f"direct_match_boost ({self.direct_match_boost}) must be greater than "
                f"1.0 + attribute boosts ({1.0 + self.max_secondary_boost:.2f})"
            )

        if self.exact_standard_threshold > self.default_threshold:
            raise ValueError(
                f"exact_standard_threshold ({self.exact_standard_threshold}) must be <= "
                f"default_threshold ({self.default_threshold})"
            )

        if self.default_limit > self.max_limit:
            raise ValueError(
                f"default_limit ({self.default_limit}) must be <= "
                f"max_limit ({self.max_limit})"
            )


# Global settings instance
# This will be initialized on first use
# and will fail fast if configuration is invalid
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance.

    Returns:
        Settings: The application settings

    Raises:
        ValueError: If settings validation fails
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


# Convenience function to reload settings (useful for testing)
def reload_settings() -> Settings:
    """Reload settings from environment.

    Returns:
        Settings: The reloaded application settings
    """
    global _settings
    _settings = Settings()
    return _settings
