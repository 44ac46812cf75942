"""Service settings: bonuses, cache timings, network, persistence."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

from hopbunny.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class LedgerConfig:
    # Versions
    server_version: str = "0.1.0"

    # Network
    host: str = "0.0.0.0"
    port: int = 3000
    cors_allow_all: bool = True
    cors_allowed_origins: list[str] = field(default_factory=list)

    # Rank cache
    rank_ttl_sec: float = 10 * 60.0
    rank_refresh_sec: float = 60.0

    # Idempotency guard
    idempotency_ttl_ms: int = 3_600_000
    idempotency_max_keys: int = 100_000

    # Referral amounts
    referrer_bonus: int = 500
    referred_bonus: int = 200

    # Listing
    default_page_size: int = 10
    max_page_size: int = 100
    leaderboard_size: int = 25

    # Persistence
    sqlite_enabled: bool = True
    sqlite_path: str = "hopbunny.sqlite3"

    # Bearer tokens for the display-field PUT
    auth_secret: str = "change-me"

    @staticmethod
    def _parse_bool(v: str | None, default: bool) -> bool:
        if v is None:
            return default
        return v.strip().lower() in ("1", "true", "yes", "on")

    @staticmethod
    def _parse_number(name: str, default, cast):
        raw = os.environ.get(name)
        if raw is None or not raw.strip():
            return default
        try:
            return cast(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: not a number", name, raw)
            return default

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        cfg = cls()
        cfg.host = os.environ.get("HOPBUNNY_HOST", cfg.host)
        cfg.port = cls._parse_number("HOPBUNNY_PORT", cfg.port, int)
        cfg.cors_allow_all = cls._parse_bool(os.environ.get("HOPBUNNY_CORS_ALLOW_ALL"), cfg.cors_allow_all)
        origins = os.environ.get("HOPBUNNY_CORS_ORIGINS")
        if origins:
            cfg.cors_allowed_origins = [o.strip() for o in origins.split(",") if o.strip()]

        cfg.sqlite_enabled = cls._parse_bool(os.environ.get("HOPBUNNY_SQLITE"), cfg.sqlite_enabled)
        cfg.sqlite_path = os.environ.get("HOPBUNNY_SQLITE_PATH", cfg.sqlite_path)

        cfg.rank_ttl_sec = cls._parse_number("HOPBUNNY_RANK_TTL_SEC", cfg.rank_ttl_sec, float)
        cfg.rank_refresh_sec = cls._parse_number("HOPBUNNY_RANK_REFRESH_SEC", cfg.rank_refresh_sec, float)
        cfg.idempotency_ttl_ms = cls._parse_number("HOPBUNNY_IDEMPOTENCY_TTL_MS", cfg.idempotency_ttl_ms, int)
        cfg.idempotency_max_keys = cls._parse_number("HOPBUNNY_IDEMPOTENCY_MAX_KEYS", cfg.idempotency_max_keys, int)
        cfg.referrer_bonus = cls._parse_number("HOPBUNNY_REFERRER_BONUS", cfg.referrer_bonus, int)
        cfg.referred_bonus = cls._parse_number("HOPBUNNY_REFERRED_BONUS", cfg.referred_bonus, int)
        cfg.auth_secret = os.environ.get("HOPBUNNY_AUTH_SECRET", cfg.auth_secret)

        path = os.environ.get("HOPBUNNY_CONFIG_FILE")
        if path:
            cfg.load_file(path)
        return cfg

    def load_file(self, path: str) -> None:
        """Apply overrides from a JSON file. Unknown keys are ignored."""
        if not os.path.exists(path):
            logger.warning("Config file %s not found; using defaults", path)
            return
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if "referrerBonus" in data:
            self.referrer_bonus = int(data["referrerBonus"])
        if "referredBonus" in data:
            self.referred_bonus = int(data["referredBonus"])
        if "rankTtlSec" in data:
            self.rank_ttl_sec = float(data["rankTtlSec"])
        if "rankRefreshSec" in data:
            self.rank_refresh_sec = float(data["rankRefreshSec"])
        if "idempotencyTtlMs" in data:
            self.idempotency_ttl_ms = int(data["idempotencyTtlMs"])
