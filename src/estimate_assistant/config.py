"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class ConfigurationError(RuntimeError):
    """Raised when credentials required for a chat request are missing."""

    def __init__(self, message: str, *, details: str | None = None) -> None:
        super().__init__(message)
        self.details = details


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Credentials are optional at startup; chat requests are rejected without them.
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    openai_assistant_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_ASSISTANT_ID", "openai_assistant_id"),
    )
    openai_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.openai.com/v1"),
        validation_alias=AliasChoices("OPENAI_BASE_URL", "openai_base_url"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("OPENAI_TIMEOUT", "request_timeout"),
        ge=1,
    )
    max_tool_rounds: int = Field(
        default=8,
        ge=1,
        validation_alias=AliasChoices("MAX_TOOL_ROUNDS", "max_tool_rounds"),
    )

    attachments_max_size_bytes: int = Field(
        default=20 * 1024 * 1024,
        ge=1,
        validation_alias=AliasChoices(
            "ATTACHMENTS_MAX_SIZE_BYTES",
            "attachments_max_size_bytes",
        ),
    )

    # When set, estimates are relayed to the automation webhook instead of
    # being rendered locally.
    pdf_webhook_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("PDF_WEBHOOK_URL", "MAKE_WEBHOOK_URL", "pdf_webhook_url"),
    )
    pdf_webhook_timeout: float = Field(
        default=30.0,
        ge=1,
        validation_alias=AliasChoices("PDF_WEBHOOK_TIMEOUT", "pdf_webhook_timeout"),
    )
    estimate_output_dir: Path = Field(
        default_factory=lambda: Path("data/estimates"),
        validation_alias=AliasChoices("ESTIMATE_OUTPUT_DIR", "estimate_output_dir"),
    )
    estimate_template_path: Optional[Path] = Field(
        default=None,
        validation_alias=AliasChoices(
            "ESTIMATE_TEMPLATE_PATH", "estimate_template_path"
        ),
    )
    company_name: str = Field(
        default="Southeastern Lighting Solutions",
        validation_alias=AliasChoices("COMPANY_NAME", "company_name"),
    )
    company_tagline: str = Field(
        default="Experts in earning trusts",
        validation_alias=AliasChoices("COMPANY_TAGLINE", "company_tagline"),
    )
    company_address: str = Field(
        default="1838 Mason Ave.\nDaytona Beach, Fl 32117",
        validation_alias=AliasChoices("COMPANY_ADDRESS", "company_address"),
    )

    def require_assistant_credentials(self) -> tuple[str, str]:
        """Return ``(api_key, assistant_id)`` or raise ``ConfigurationError``."""

        if self.openai_api_key is None or not self.openai_api_key.get_secret_value():
            raise ConfigurationError(
                "OpenAI API key is not configured",
                details="Please set the OPENAI_API_KEY environment variable",
            )
        if not self.openai_assistant_id:
            raise ConfigurationError(
                "OpenAI Assistant ID is not configured",
                details="Please set the OPENAI_ASSISTANT_ID environment variable",
            )
        return self.openai_api_key.get_secret_value(), self.openai_assistant_id


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["ConfigurationError", "Settings", "get_settings"]
