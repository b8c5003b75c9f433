"""
Configuration management for the wealth-event radar.

All thresholds live here as named settings so every stage reads one
canonical value. Supports OpenAI-compatible, Groq and Ollama LLM providers.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── LLM Configuration ──
    # Provider priority: OpenAI-compatible → Groq → Ollama
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4.1-mini", alias="OPENAI_MODEL")
    openai_base_url: str = Field(default="", alias="OPENAI_BASE_URL")

    groq_api_key: str = Field(default="", alias="GROQ_API_KEY")
    groq_model: str = Field(default="llama-3.3-70b-versatile", alias="GROQ_MODEL")

    use_ollama: bool = Field(default=False, alias="USE_OLLAMA")
    ollama_model: str = Field(default="mistral", alias="OLLAMA_MODEL")
    ollama_base_url: str = Field(default="http://localhost:11434", alias="OLLAMA_BASE_URL")

    llm_temperature: float = Field(default=0.1, alias="LLM_TEMPERATURE")
    llm_json_max_retries: int = Field(default=1, alias="LLM_JSON_MAX_RETRIES")
    # Seconds to wait for a provider to leave cooldown before giving up
    llm_max_provider_wait: float = Field(default=30.0, alias="LLM_MAX_PROVIDER_WAIT")
    provider_ratelimit_max_seconds: float = Field(default=120.0, alias="PROVIDER_RATELIMIT_MAX_SECONDS")

    # ── Embeddings ──
    huggingface_api_key: str = Field(default="", alias="HF_API_KEY")
    embedding_model: str = Field(default="sentence-transformers/all-MiniLM-L6-v2", alias="EMBEDDING_MODEL")
    local_embedding_model: str = Field(default="all-MiniLM-L6-v2", alias="LOCAL_EMBEDDING_MODEL")

    # ── Vector index (best-effort mirror of stored embeddings) ──
    vector_index_enabled: bool = Field(default=True, alias="VECTOR_INDEX_ENABLED")
    vector_index_path: str = Field(default="./data/vector_index", alias="VECTOR_INDEX_PATH")

    # ── Search & encyclopedia ──
    tavily_api_keys: str = Field(default="", alias="TAVILY_API_KEYS")
    tavily_enabled: bool = Field(default=True, alias="TAVILY_ENABLED")
    wikipedia_api_url: str = Field(default="https://en.wikipedia.org/w/api.php", alias="WIKIPEDIA_API_URL")

    # ── Page fetching ──
    # Playwright shared session when enabled, plain httpx otherwise
    browser_enabled: bool = Field(default=True, alias="BROWSER_ENABLED")
    fetch_timeout_seconds: float = Field(default=20.0, alias="FETCH_TIMEOUT_SECONDS")

    # ── Notifications ──
    environment: str = Field(default="development", alias="ENVIRONMENT")
    force_email_send_dev: bool = Field(default=False, alias="FORCE_EMAIL_SEND_DEV")
    brevo_api_key: str = Field(default="", alias="BREVO_API_KEY")
    brevo_sender_email: str = Field(default="", alias="BREVO_SENDER_EMAIL")
    brevo_sender_name: str = Field(default="Wealth Radar", alias="BREVO_SENDER_NAME")
    supervisor_email: str = Field(default="", alias="SUPERVISOR_EMAIL")
    telegram_bot_token: str = Field(default="", alias="TELEGRAM_BOT_TOKEN")

    # ── Relevance thresholds (0-100 scale) ──
    # Headline score needed before the article body is fetched
    headlines_relevance_threshold: int = Field(default=20, alias="HEADLINES_RELEVANCE_THRESHOLD")
    # Article score that makes an article relevant (opportunities, clustering, stream)
    articles_relevance_threshold: int = Field(default=50, alias="ARTICLES_RELEVANCE_THRESHOLD")
    # article_content is kept on the stored document only above this score
    display_relevance_threshold: int = Field(default=25, alias="DISPLAY_RELEVANCE_THRESHOLD")
    # Headlines at or above this score go through verification and salvage
    high_signal_threshold: int = Field(default=85, alias="HIGH_SIGNAL_THRESHOLD")
    event_notification_threshold: int = Field(default=50, alias="EVENT_NOTIFICATION_THRESHOLD")
    min_wealth_threshold_mm: float = Field(default=30.0, alias="MIN_WEALTH_THRESHOLD_MM")

    # ── Pipeline tuning ──
    pipeline_concurrency: int = Field(default=5, alias="PIPELINE_CONCURRENCY")
    headline_batch_size: int = Field(default=5, alias="HEADLINE_BATCH_SIZE")
    min_article_chars: int = Field(default=150, alias="MIN_ARTICLE_CHARS")
    min_headline_chars: int = Field(default=15, alias="MIN_HEADLINE_CHARS")
    jsonld_min_count: int = Field(default=3, alias="JSONLD_MIN_COUNT")
    cluster_content_chars: int = Field(default=1500, alias="CLUSTER_CONTENT_CHARS")
    rag_similarity_threshold: float = Field(default=0.65, alias="RAG_SIMILARITY_THRESHOLD")
    rag_top_k: int = Field(default=3, alias="RAG_TOP_K")
    wikipedia_max_chars: int = Field(default=750, alias="WIKIPEDIA_MAX_CHARS")
    verification_max_alternates: int = Field(default=5, alias="VERIFICATION_MAX_ALTERNATES")
    store_max_retries: int = Field(default=3, alias="STORE_MAX_RETRIES")
    store_retry_backoff_seconds: float = Field(default=0.5, alias="STORE_RETRY_BACKOFF_SECONDS")

    # ── Application ──
    mock_mode: bool = Field(default=False, alias="MOCK_MODE")
    refresh_mode: bool = Field(default=False, alias="REFRESH_MODE")
    # Bearer token for POST /run-pipeline. Empty = dev mode (no auth)
    api_key: str = Field(default="", alias="API_KEY")

    # Database
    database_url: str = Field(
        default="sqlite:///./wealth_radar.db",
        alias="DATABASE_URL"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def thresholds_summary(self) -> dict:
        """Canonical threshold values, for /health and the supervisor report."""
        return {
            "headlines_relevance": self.headlines_relevance_threshold,
            "articles_relevance": self.articles_relevance_threshold,
            "display_relevance": self.display_relevance_threshold,
            "high_signal": self.high_signal_threshold,
            "event_notification": self.event_notification_threshold,
            "min_wealth_mm": self.min_wealth_threshold_mm,
            "rag_similarity": self.rag_similarity_threshold,
        }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Domains that never host a primary news article (verification skips them)
SOURCE_BLACKLIST = {
    "twitter.com", "x.com", "facebook.com", "linkedin.com",
    "instagram.com", "youtube.com", "reddit.com",
}

# Opportunity names containing any of these are too generic to contact
VAGUE_CONTACT_PHRASES = [
    "the sellers",
    "the founders",
    "shareholders",
    "the owners",
    "management team",
]

# Encyclopedia pages whose description mentions these are not about a
# company, deal or business person
WIKI_REJECT_KEYWORDS = [
    "song", "single by", "album", "film", "movie", "television series",
    "tv series", "video game", "fictional", "novel", "band", "fashion",
    "clothing brand", "musician", "rapper",
]


# ══════════════════════════════════════════════════════════════════════════════
# NEWS SOURCES - seed for the persisted source registry
# ══════════════════════════════════════════════════════════════════════════════

DEFAULT_SOURCES = [
    # ─────────────────────────────────────────────────────────────────────────
    # Denmark
    # ─────────────────────────────────────────────────────────────────────────
    {
        "name": "borsen",
        "newspaper": "Børsen",
        "base_url": "https://borsen.dk",
        "section_url": "https://borsen.dk/nyheder/virksomheder",
        "country": "Denmark",
        "language": "da",
        "use_json_ld": True,
        "extractor_key": "borsen",
        "article_selector": "div.article-content",
    },
    {
        "name": "finans",
        "newspaper": "Finans",
        "base_url": "https://finans.dk",
        "section_url": "https://finans.dk/erhverv",
        "country": "Denmark",
        "language": "da",
        "use_json_ld": False,
        "extractor_key": "finans",
        "headline_selector": "h2 a, h3 a",
        "article_selector": "article",
    },
    # ─────────────────────────────────────────────────────────────────────────
    # Norway
    # ─────────────────────────────────────────────────────────────────────────
    {
        "name": "dn",
        "newspaper": "Dagens Næringsliv",
        "base_url": "https://www.dn.no",
        "section_url": "https://www.dn.no/naeringsliv",
        "country": "Norway",
        "language": "no",
        "use_json_ld": True,
        "article_selector": "article",
    },
    {
        "name": "e24",
        "newspaper": "E24",
        "base_url": "https://e24.no",
        "section_url": "https://e24.no/naeringsliv",
        "country": "Norway",
        "language": "no",
        "use_json_ld": False,
        "extractor_key": "e24",
        "article_selector": "article",
    },
    # ─────────────────────────────────────────────────────────────────────────
    # Sweden
    # ─────────────────────────────────────────────────────────────────────────
    {
        "name": "di",
        "newspaper": "Dagens industri",
        "base_url": "https://www.di.se",
        "section_url": "https://www.di.se/naringsliv/",
        "country": "Sweden",
        "language": "sv",
        "use_json_ld": True,
        "article_selector": "div.article__body",
    },
    # ─────────────────────────────────────────────────────────────────────────
    # International
    # ─────────────────────────────────────────────────────────────────────────
    {
        "name": "reuters_deals",
        "newspaper": "Reuters",
        "base_url": "https://www.reuters.com",
        "section_url": "https://www.reuters.com/business/finance/",
        "country": "International",
        "language": "en",
        "use_json_ld": True,
        "extractor_key": "reuters",
        "article_selector": "article",
    },
]
