"""
maintainable — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (one level up from maintainable/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # LLM: provider-agnostic (ollama, gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "ollama"
    LLM_MODEL: str = ""          # empty → smart default per provider
    RESPONSE_MODEL: str = ""     # model for reply generation, empty → LLM_MODEL
    LLM_API_KEY: str = ""
    LLM_BASE_URL: str = "http://localhost:11434"
    PARSE_TIMEOUT_SECONDS: int = 60
    RESPONSE_TIMEOUT_SECONDS: int = 120

    # SQLite
    DATABASE_PATH: str = "data/maintainable.db"

    # Mailbox (IMAP in, SMTP out)
    MAIL_ADDRESS: str
    MAIL_PASSWORD: str
    IMAP_HOST: str = ""
    IMAP_PORT: int = 993
    SMTP_HOST: str = ""
    SMTP_PORT: int = 465

    # Processing queue
    POLL_INTERVAL_SECONDS: int = 30
    QUEUE_BATCH_SIZE: int = 5
    MAX_RETRIES: int = 3

    # Daily reminder
    REMINDER_HOUR: int = 21
    TIMEZONE: str = "America/Chicago"

    @field_validator(
        "PARSE_TIMEOUT_SECONDS", "RESPONSE_TIMEOUT_SECONDS", "IMAP_PORT",
        "SMTP_PORT", "POLL_INTERVAL_SECONDS", "QUEUE_BATCH_SIZE",
        "MAX_RETRIES", "REMINDER_HOUR",
        mode="before",
    )
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    mail_address = os.getenv("MAIL_ADDRESS", "")
    mail_password = os.getenv("MAIL_PASSWORD", "")
    provider = os.getenv("LLM_PROVIDER", "ollama")
    llm_api_key = os.getenv("LLM_API_KEY", "")

    if not mail_address or not mail_password:
        print("ERROR: MAIL_ADDRESS / MAIL_PASSWORD missing in .env", file=sys.stderr)
        sys.exit(1)

    # Ollama runs locally without a key; hosted providers need one
    if provider.lower() != "ollama" and (not llm_api_key or llm_api_key.startswith("your-")):
        print("ERROR: LLM_API_KEY is missing or not set in .env", file=sys.stderr)
        sys.exit(1)

    host_default = mail_address.split("@")[-1]
    return Settings(
        LLM_PROVIDER=provider,
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        RESPONSE_MODEL=os.getenv("RESPONSE_MODEL", ""),
        LLM_API_KEY=llm_api_key,
        LLM_BASE_URL=os.getenv("LLM_BASE_URL", "http://localhost:11434"),
        PARSE_TIMEOUT_SECONDS=os.getenv("PARSE_TIMEOUT_SECONDS", "60"),
        RESPONSE_TIMEOUT_SECONDS=os.getenv("RESPONSE_TIMEOUT_SECONDS", "120"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/maintainable.db"),
        MAIL_ADDRESS=mail_address,
        MAIL_PASSWORD=mail_password,
        IMAP_HOST=os.getenv("IMAP_HOST", f"imap.{host_default}"),
        IMAP_PORT=os.getenv("IMAP_PORT", "993"),
        SMTP_HOST=os.getenv("SMTP_HOST", f"smtp.{host_default}"),
        SMTP_PORT=os.getenv("SMTP_PORT", "465"),
        POLL_INTERVAL_SECONDS=os.getenv("POLL_INTERVAL_SECONDS", "30"),
        QUEUE_BATCH_SIZE=os.getenv("QUEUE_BATCH_SIZE", "5"),
        MAX_RETRIES=os.getenv("MAX_RETRIES", "3"),
        REMINDER_HOUR=os.getenv("REMINDER_HOUR", "21"),
        TIMEZONE=os.getenv("TIMEZONE", "America/Chicago"),
    )


# Singleton, imported by all other modules as:
#   from maintainable.config import settings
settings = _load_settings()
