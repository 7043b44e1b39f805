"""Process-level settings loaded from environment variables.

Every variable is prefixed with ``ACCESSLOG_`` and may also come from a
``.env`` file, e.g.::

    ACCESSLOG_COMBINED_LOG=true
    ACCESSLOG_FORMAT="${ip} ${method} ${route} ${status}\\n"
"""

from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ---- Access log ----
    format: Optional[str] = None  # Template; built-in default when unset
    time_format: Optional[str] = None  # strftime layout
    combined_log: bool = False

    # ---- App ----
    log_level: str = "INFO"  # Level of the package's own diagnostics

    model_config = {
        "env_prefix": "ACCESSLOG_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("format")
    @classmethod
    def _unescape_newlines(cls, value: Optional[str]) -> Optional[str]:
        # Shells and .env files hand over a literal backslash-n
        if value is None:
            return value
        return value.replace("\\n", "\n")


@lru_cache()
def get_settings() -> Settings:
    """Cached singleton accessor for application settings."""
    return Settings()


# Module-level alias used by the demo app
settings = get_settings()
