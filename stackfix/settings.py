from __future__ import annotations

import os

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STACKFIX_", extra="ignore")

    # "dev" synthesizes a realistic Sentry prompt when no prompt is supplied.
    environment: str = "production"
    log_level: str = "INFO"

    github_token: str | None = None
    github_api_base: str = "https://api.github.com"
    github_timeout_s: float = 20.0
    # Fallback target when neither the request nor the prompt names a repo.
    default_owner: str | None = None
    default_repo: str | None = None
    branch_prefix: str = "fix/"
    commit_message: str = "fix: automated stack-trace fix"

    # LLM provider for file location and fix proposal.
    llm_mode: str = "openai"  # openai|openrouter|groq|off
    llm_max_tokens: int = 8192
    llm_timeout_s: float = 120.0

    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-5"
    openai_locator_model: str = "gpt-5-nano"

    openrouter_api_key: str | None = None
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_model: str = "openai/gpt-5"

    groq_api_key: str | None = None
    groq_base_url: str = "https://api.groq.com/openai/v1"
    groq_model: str = "openai/gpt-oss-120b"

    # agent: LLM ranks files, direct: candidate lookup + code search only
    locator_mode: str = "agent"
    locator_top_k: int = 15

    # Sentry webhook
    webhook_secret: str | None = None
    webhook_autorun: bool = False

    auto_merge: bool = False
    merge_method: str = "merge"

    # Download the fix branch and run install + build before opening the PR.
    build_check_enabled: bool = False
    build_check_timeout_s: float = 600.0

    audit_log_path: str = "var/audit/stackfix_audit.jsonl"

    def resolve_github_token(self, explicit: str | None = None) -> str | None:
        return explicit or self.github_token or os.environ.get("GITHUB_TOKEN") or None
