"""Session configuration, overridable through environment variables."""

import os

from pydantic import BaseModel, Field

DEFAULT_COALESCE_WINDOW_MS = 500
DEFAULT_LINK_CONFIRM_MS = 1000
DEFAULT_BASE_URL = "http://127.0.0.1:8765/"


class SessionConfig(BaseModel):
    """Heuristic timing constants and the page's base URL."""
    # Edits closer together than this collapse into one undo step
    coalesce_window_ms: int = Field(default=DEFAULT_COALESCE_WINDOW_MS, ge=0)
    # How long the "link copied" confirmation stays visible
    link_confirm_ms: int = Field(default=DEFAULT_LINK_CONFIRM_MS, ge=0)
    base_url: str = DEFAULT_BASE_URL

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """Build a config from TIKZCD_* environment variables."""
        return cls(
            coalesce_window_ms=int(os.environ.get(
                "TIKZCD_COALESCE_WINDOW_MS", DEFAULT_COALESCE_WINDOW_MS)),
            link_confirm_ms=int(os.environ.get(
                "TIKZCD_LINK_CONFIRM_MS", DEFAULT_LINK_CONFIRM_MS)),
            base_url=os.environ.get("TIKZCD_BASE_URL", DEFAULT_BASE_URL),
        )
