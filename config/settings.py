"""
Centralized configuration for Groundline Support Bot.

All settings are loaded from environment variables via .env file.
Per-organization overrides live in the organization's settings JSON;
the RAG values here are the fallbacks used when an org omits them.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


DEFAULT_FALLBACK_MESSAGE = (
    "I don't have enough information to answer that accurately. "
    "Would you like to speak with a human agent?"
)


class Settings(BaseSettings):
    """Application settings."""

    # Brand
    brand_name: str = Field(default="Groundline", env="BRAND_NAME")

    # AWS / Bedrock
    aws_region: str = Field(default="us-east-1", env="AWS_REGION")
    bedrock_embed_model_id: str = Field(
        default="amazon.titan-embed-text-v2:0", env="BEDROCK_EMBED_MODEL_ID"
    )
    bedrock_llm_model_id: str = Field(
        default="us.anthropic.claude-sonnet-4-20250514-v1:0", env="BEDROCK_LLM_MODEL_ID"
    )

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    openai_embed_model: str = Field(default="text-embedding-3-small", env="OPENAI_EMBED_MODEL")
    openai_llm_model: str = Field(default="gpt-4o", env="OPENAI_LLM_MODEL")

    # LLM provider selection
    llm_provider: str = Field(default="openai", env="LLM_PROVIDER")  # openai | bedrock
    llm_max_tokens: int = Field(default=2048, env="LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.2, env="LLM_TEMPERATURE")
    embedding_cache_size: int = Field(default=0, env="EMBEDDING_CACHE_SIZE")

    # Pinecone
    pinecone_api_key: str = Field(default="", env="PINECONE_API_KEY")
    pinecone_index_name: str = Field(default="groundline-kb", env="PINECONE_INDEX_NAME")
    pinecone_cloud: str = Field(default="aws", env="PINECONE_CLOUD")
    pinecone_region: str = Field(default="us-east-1", env="PINECONE_REGION")

    # Knowledge base ingestion
    chunk_size: int = Field(default=500, env="CHUNK_SIZE")
    chunk_overlap: int = Field(default=100, env="CHUNK_OVERLAP")
    embed_batch_size: int = Field(default=25, env="EMBED_BATCH_SIZE")

    # RAG / pipeline defaults
    rag_top_k: int = Field(default=4, env="RAG_TOP_K")
    rag_similarity_threshold: float = Field(default=0.75, env="RAG_SIMILARITY_THRESHOLD")
    llm_confidence_threshold: float = Field(default=0.7, env="LLM_CONFIDENCE_THRESHOLD")
    context_max_messages: int = Field(default=50, env="CONTEXT_MAX_MESSAGES")
    context_max_days: int = Field(default=7, env="CONTEXT_MAX_DAYS")
    context_max_tokens: int = Field(default=12000, env="CONTEXT_MAX_TOKENS")
    default_fallback_message: str = Field(
        default=DEFAULT_FALLBACK_MESSAGE, env="DEFAULT_FALLBACK_MESSAGE"
    )

    # WhatsApp Cloud API
    whatsapp_api_token: Optional[str] = Field(default=None, env="WHATSAPP_API_TOKEN")
    whatsapp_verify_token: Optional[str] = Field(default=None, env="WHATSAPP_VERIFY_TOKEN")
    whatsapp_app_secret: Optional[str] = Field(default=None, env="WHATSAPP_APP_SECRET")

    # Database
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_title: str = Field(default="Groundline Support Bot API", env="API_TITLE")
    api_version: str = Field(default="1.0.0", env="API_VERSION")
    cors_origins: str = Field(default="*", env="CORS_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_json: bool = Field(default=False, env="LOG_JSON")
    debug: bool = Field(default=False, env="DEBUG")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def is_bedrock(self) -> bool:
        return self.llm_provider.lower() == "bedrock"

    @property
    def is_openai(self) -> bool:
        return self.llm_provider.lower() == "openai"

    @property
    def embed_model_id(self) -> str:
        if self.is_bedrock:
            return self.bedrock_embed_model_id
        return self.openai_embed_model

    @property
    def llm_model_id(self) -> str:
        if self.is_bedrock:
            return self.bedrock_llm_model_id
        return self.openai_llm_model

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
