from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_LEAF_LEVEL_MARKERS: tuple[str, ...] = (
    "booth",
    "polling station",
    "polling center",
    "polling centre",
)


class ConsoleSettings(BaseSettings):
    """Runtime knobs for hierarchy discovery and the report workflow."""

    model_config = SettingsConfigDict(
        env_prefix="VIC_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Substrings that mark a level name as leaf when no explicit flag is stored
    leaf_level_markers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_LEAF_LEVEL_MARKERS)
    )
    # Reference behaviour allows sending a report back to a level it already passed
    allow_reforward: bool = True
    discovery_cache_ttl_seconds: float = Field(default=300.0, ge=0)
    default_page_limit: int = Field(default=10, ge=1)
    max_page_limit: int = Field(default=100, ge=1)
    level_kinds_path: str | None = None

    @field_validator("leaf_level_markers", mode="before")
    @classmethod
    def _split_markers(cls, value: object) -> object:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("leaf_level_markers")
    @classmethod
    def _normalise_markers(cls, value: list[str]) -> list[str]:
        markers = [m.strip().lower() for m in value if m.strip()]
        if not markers:
            raise ValueError("VIC_LEAF_LEVEL_MARKERS must contain at least one marker")
        return markers

    @model_validator(mode="after")
    def _check_page_limits(self) -> "ConsoleSettings":
        if self.default_page_limit > self.max_page_limit:
            raise ValueError("VIC_DEFAULT_PAGE_LIMIT must not exceed VIC_MAX_PAGE_LIMIT")
        return self


@lru_cache(maxsize=1)
def get_settings() -> ConsoleSettings:
    return ConsoleSettings()
