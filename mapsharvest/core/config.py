"""
Configuration Management for mapsharvest

This module provides centralized configuration management with:
- Environment variable loading
- Type validation
- Sensible defaults
- Configuration documentation
"""

import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

from mapsharvest.core.budget import BudgetSettings


_FALSY = {"0", "false", "False", "no"}
_TRUTHY = {"1", "true", "True", "yes"}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    if default:
        return raw not in _FALSY
    return raw in _TRUTHY


class Config:
    """
    Harvest configuration loaded from environment variables.

    All configuration is read from configs/.env file or environment variables.
    See configs/.env.example for documentation of all settings.
    """

    def __init__(self, env_path: Optional[Path] = None):
        """
        Initialize configuration from environment.

        Args:
            env_path: Path to .env file (default: configs/.env)
        """
        if env_path is None:
            env_path = Path("configs/.env")

        load_dotenv(dotenv_path=env_path, override=True)

        # === Browser / Session ===
        self.language: str = os.getenv("HARVEST_LANGUAGE", "en")
        self.headless: bool = _env_bool("HARVEST_HEADLESS", True)
        self.relay_url: Optional[str] = os.getenv("HARVEST_RELAY_URL") or None
        self.relay_ready_timeout_ms: int = int(os.getenv("HARVEST_RELAY_READY_TIMEOUT_MS", "15000"))
        self.direct_ready_timeout_ms: int = int(os.getenv("HARVEST_DIRECT_READY_TIMEOUT_MS", "30000"))
        self.direct_retries: int = int(os.getenv("HARVEST_DIRECT_RETRIES", "1"))
        self.nav_timeout_ms: int = int(os.getenv("HARVEST_NAV_TIMEOUT_MS", "45000"))
        self.content_ready_timeout_ms: int = int(os.getenv("HARVEST_CONTENT_READY_TIMEOUT_MS", "8000"))
        self.results_wait_timeout_ms: int = int(os.getenv("HARVEST_RESULTS_WAIT_TIMEOUT_MS", "30000"))

        # === Time budget ===
        self.time_budget_ms: int = int(os.getenv("HARVEST_TIME_BUDGET_MS", "270000"))
        self.teardown_buffer_ms: int = int(os.getenv("HARVEST_TEARDOWN_BUFFER_MS", "15000"))
        self.safety_margin_ms: int = int(os.getenv("HARVEST_SAFETY_MARGIN_MS", "5000"))
        self.per_future_query_reserve_ms: int = int(os.getenv("HARVEST_PER_FUTURE_QUERY_RESERVE_MS", "25000"))
        self.min_term_allowance_ms: int = int(os.getenv("HARVEST_MIN_TERM_ALLOWANCE_MS", "20000"))
        self.per_item_cost_ms: int = int(os.getenv("HARVEST_PER_ITEM_COST_MS", "8000"))

        # === Collection / extraction ===
        self.max_results: int = int(os.getenv("HARVEST_MAX_RESULTS", "120"))
        self.max_scroll_rounds: int = int(os.getenv("HARVEST_MAX_SCROLL_ROUNDS", "80"))
        self.scrape_reviews: bool = _env_bool("HARVEST_SCRAPE_REVIEWS", True)
        self.reviews_limit: int = int(os.getenv("HARVEST_REVIEWS_LIMIT", "5"))
        self.scrape_opening_hours: bool = _env_bool("HARVEST_SCRAPE_HOURS", True)

        # === Enrichment ===
        self.scrape_emails: bool = _env_bool("HARVEST_SCRAPE_EMAILS", True)
        self.enrichment_cap_ms: int = int(os.getenv("HARVEST_ENRICHMENT_CAP_MS", "20000"))
        self.lookup_timeout_ms: int = int(os.getenv("HARVEST_LOOKUP_TIMEOUT_MS", "5000"))

        # === Supabase (structured log shipping) ===
        self.supabase_url: Optional[str] = os.getenv("SUPABASE_URL")
        self.supabase_service_role_key: Optional[str] = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

        # === Logging / Output ===
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO")
        self.log_dir: Path = Path(os.getenv("LOG_DIR", "logs"))
        self.base_out_dir: Path = Path(os.getenv("BASE_OUT_DIR", "out"))
        self.debug_screenshots: bool = _env_bool("HARVEST_DEBUG_SCREENSHOTS", False)

    def budget_settings(self) -> BudgetSettings:
        """Collect the scheduler's timing knobs into one value."""
        return BudgetSettings(
            total_ms=self.time_budget_ms,
            teardown_buffer_ms=self.teardown_buffer_ms,
            safety_margin_ms=self.safety_margin_ms,
            per_future_query_reserve_ms=self.per_future_query_reserve_ms,
            min_term_allowance_ms=self.min_term_allowance_ms,
            per_item_cost_ms=self.per_item_cost_ms,
            enrichment_cap_ms=self.enrichment_cap_ms,
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If any configuration value is missing or invalid
        """
        errors = []

        if self.time_budget_ms <= 0:
            errors.append(f"HARVEST_TIME_BUDGET_MS must be positive, got {self.time_budget_ms}")

        if self.teardown_buffer_ms < 0 or self.teardown_buffer_ms >= self.time_budget_ms:
            errors.append(
                f"HARVEST_TEARDOWN_BUFFER_MS ({self.teardown_buffer_ms}) must be >= 0 "
                f"and smaller than HARVEST_TIME_BUDGET_MS ({self.time_budget_ms})"
            )

        if self.per_item_cost_ms <= 0:
            errors.append(f"HARVEST_PER_ITEM_COST_MS must be positive, got {self.per_item_cost_ms}")

        for name, value in (
            ("HARVEST_SAFETY_MARGIN_MS", self.safety_margin_ms),
            ("HARVEST_PER_FUTURE_QUERY_RESERVE_MS", self.per_future_query_reserve_ms),
            ("HARVEST_MIN_TERM_ALLOWANCE_MS", self.min_term_allowance_ms),
            ("HARVEST_ENRICHMENT_CAP_MS", self.enrichment_cap_ms),
        ):
            if value < 0:
                errors.append(f"{name} must be non-negative, got {value}")

        if self.relay_ready_timeout_ms >= self.direct_ready_timeout_ms:
            errors.append(
                f"HARVEST_RELAY_READY_TIMEOUT_MS ({self.relay_ready_timeout_ms}) must be shorter than "
                f"HARVEST_DIRECT_READY_TIMEOUT_MS ({self.direct_ready_timeout_ms})"
            )

        if self.max_results <= 0:
            errors.append(f"HARVEST_MAX_RESULTS must be positive, got {self.max_results}")

        if self.max_scroll_rounds <= 0:
            errors.append(f"HARVEST_MAX_SCROLL_ROUNDS must be positive, got {self.max_scroll_rounds}")

        if self.direct_retries < 0:
            errors.append(f"HARVEST_DIRECT_RETRIES must be non-negative, got {self.direct_retries}")

        if self.reviews_limit < 0:
            errors.append(f"HARVEST_REVIEWS_LIMIT must be non-negative, got {self.reviews_limit}")

        if errors:
            raise ValueError("Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors))

    def __repr__(self) -> str:
        """Return string representation of config (without secrets)."""
        return (
            f"Config(\n"
            f"  language={self.language},\n"
            f"  headless={self.headless},\n"
            f"  relay_url={'***' if self.relay_url else 'NOT SET'},\n"
            f"  time_budget_ms={self.time_budget_ms},\n"
            f"  per_item_cost_ms={self.per_item_cost_ms},\n"
            f"  max_results={self.max_results},\n"
            f"  supabase_url={self.supabase_url or 'NOT SET'},\n"
            f"  log_level={self.log_level}\n"
            f")"
        )


# Global configuration instance (lazy-loaded)
_config: Optional[Config] = None


def get_config(env_path: Optional[Path] = None) -> Config:
    """
    Get the global configuration instance.

    Args:
        env_path: Optional path to .env file (only used on first call)

    Returns:
        Global Config instance
    """
    global _config
    if _config is None:
        _config = Config(env_path=env_path)
    return _config


def validate_config(env_path: Optional[Path] = None) -> None:
    """
    Validate configuration and raise error if invalid.

    This should be called at startup to fail fast if configuration
    is incorrect.

    Raises:
        ValueError: If configuration is invalid
    """
    config = get_config(env_path=env_path)
    config.validate()
