from functools import lru_cache
from typing import Annotated, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    app_name: str = Field(default="Restyle Admin API")
    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    )
    supabase_url: AnyHttpUrl | None = Field(
        default=None
    )
    supabase_service_role_key: str | None = Field(
        default=None
    )
    supabase_timeout: float = Field(
        default=10.0
    )
    use_mock_data: bool = Field(
        default=True
    )

    transactions_table: str = Field(default="Transactions")
    transaction_items_table: str = Field(default="Transaction Items")
    bookings_table: str = Field(default="restyle_bookings")

    # Slack allowed between the summed split amounts and the sale total.
    split_tolerance: float = Field(
        default=0.05
    )
    rollback_partial_checkout: bool = Field(
        default=True
    )
    item_fetch_chunk_size: int = Field(
        default=400
    )
    default_list_limit: int = Field(
        default=50
    )
    business_timezone: str = Field(
        default="America/Denver"
    )

    model_config = SettingsConfigDict(env_prefix="RESTYLE_", case_sensitive=False)

    @field_validator("cors_origins", mode="before")
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
