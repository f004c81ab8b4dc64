"""Tests for settings and logging configuration."""

import json
import logging

from config.logging_setup import JsonFormatter
from config.settings import Settings


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.rag_top_k == 4
        assert settings.llm_confidence_threshold == 0.7
        assert settings.context_max_tokens == 12000
        assert settings.is_openai
        assert settings.llm_model_id == settings.openai_llm_model

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("LLM_PROVIDER", "bedrock")
        monkeypatch.setenv("RAG_SIMILARITY_THRESHOLD", "0.6")
        settings = Settings()
        assert settings.is_bedrock
        assert settings.rag_similarity_threshold == 0.6
        assert settings.embed_model_id == settings.bedrock_embed_model_id

    def test_cors_origins_list(self, monkeypatch):
        monkeypatch.setenv("CORS_ORIGINS", "https://a.test, https://b.test,")
        assert Settings().cors_origins_list == ["https://a.test", "https://b.test"]


class TestJsonFormatter:
    def test_structured_fields_carried(self):
        record = logging.LogRecord("llm.orchestrator", logging.INFO, __file__, 1, "Pipeline done", None, None)
        record.org_id = "org-1"
        record.latency_ms = 812.5

        data = json.loads(JsonFormatter().format(record))

        assert data["message"] == "Pipeline done"
        assert data["level"] == "INFO"
        assert data["org_id"] == "org-1"
        assert data["latency_ms"] == 812.5
        assert "conversation_id" not in data
