"""Configuration management for Bill Split."""

from decimal import Decimal
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .categories import DEFAULT_CATEGORIES
from .exceptions import ConfigurationError


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BILL_SPLIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Display
    currency_symbol: str = "€"

    # Analytics settings
    monthly_budget: Decimal = Decimal("500")  # Overall monthly spending ceiling
    trend_months: int = 6

    # Canonical, ordered category list
    categories: list[str] = list(DEFAULT_CATEGORIES)

    # Database path
    database_path: Path = Path.home() / ".bill_split" / "bill_split.db"

    def __init__(self, **kwargs):
        """Initialize settings and create database directory if needed."""
        super().__init__(**kwargs)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    """Load application settings from environment variables."""
    try:
        return Settings()
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load settings. Check your BILL_SPLIT_* environment "
            f"variables or .env file.\n"
            f"Error: {e}"
        ) from e
