"""Environment-driven settings for the screener service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise RuntimeError(f"{name}={raw!r} must be an integer") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class Settings:
    """Runtime configuration read from the process environment.

    Durations coming from the environment in milliseconds (`MCP_SESSION_TTL`,
    `SCREENSHOTS_TTL`) are exposed here in seconds.
    """

    port: int = 3001
    base_url: str = "http://localhost:3001"
    session_ttl_seconds: float = 600.0
    session_sweep_interval: float = 60.0
    screenshots_dir: Path = BASE_DIR / "screenshots"
    screenshots_ttl_seconds: float = 1800.0
    screenshots_sweep_interval: float = 60.0
    mcp_image_urls: bool = False
    browser_headless: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, validating numbers."""
        port = _env_int("MCP_PORT", 3001)
        base_url = (os.getenv("REST_BASE_URL") or f"http://localhost:{port}").rstrip("/")

        session_ttl_ms = _env_int("MCP_SESSION_TTL", 600_000)
        screenshots_ttl_ms = _env_int("SCREENSHOTS_TTL", 1_800_000)
        if session_ttl_ms <= 0 or screenshots_ttl_ms <= 0:
            raise RuntimeError("MCP_SESSION_TTL and SCREENSHOTS_TTL must be positive")

        session_sweep_interval = _env_int("MCP_SESSION_SWEEP_INTERVAL", 60)
        screenshots_sweep_interval = _env_int("SCREENSHOTS_SWEEP_INTERVAL", 60)
        if session_sweep_interval <= 0 or screenshots_sweep_interval <= 0:
            raise RuntimeError("MCP_SESSION_SWEEP_INTERVAL and SCREENSHOTS_SWEEP_INTERVAL must be positive")

        screenshots_env = os.getenv("SCREENSHOTS_DIR")
        screenshots_dir = (
            Path(screenshots_env).expanduser() if screenshots_env and screenshots_env.strip() else BASE_DIR / "screenshots"
        )
        if screenshots_dir.exists() and not screenshots_dir.is_dir():
            raise RuntimeError(
                f"SCREENSHOTS_DIR={screenshots_env!r} points to a file, not a directory ({screenshots_dir})."
            )

        return cls(
            port=port,
            base_url=base_url,
            session_ttl_seconds=session_ttl_ms / 1000,
            session_sweep_interval=float(session_sweep_interval),
            screenshots_dir=screenshots_dir,
            screenshots_ttl_seconds=screenshots_ttl_ms / 1000,
            screenshots_sweep_interval=float(screenshots_sweep_interval),
            mcp_image_urls=_env_bool("MCP_IMAGE_URLS", False),
            browser_headless=_env_bool("BROWSER_HEADLESS", True),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )
