"""Pipeline configuration read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_MIN_BATCH_SIZE = 3
_MAX_BATCH_SIZE = 10


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using default %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using default %s", name, raw, default)
        return default


@dataclass(frozen=True)
class PipelineConfig:
    """Thresholds, cache windows and pacing for the purchase pipeline.

    Every knob has a default matching the production behaviour, so
    ``PipelineConfig()`` is a valid configuration for tests.
    """

    api_key: str = ""
    model: str = "claude-haiku-4-5-20251001"
    db_path: Path = Path("data/mailledger.db")
    user_id: str = "default"

    # ConfidenceMerger gates
    ai_min_confidence: float = 0.3
    regex_min_score: float = 0.5

    # AIAnalysisAdapter
    body_char_limit: int = 3_000
    cache_ttl_hours: float = 24.0
    freshness_days: int = 30
    batch_size: int = 3
    batch_delay_seconds: float = 1.5
    max_retries: int = 3

    # PurchaseReconciler
    dedup_window_days: float = 7.0
    amount_tolerance: float = 1.0

    # Watcher / maintenance
    spool_dir: Path = Path("data/spool")
    poll_interval_seconds: int = 60
    maintenance_time: str = "03:00"

    def __post_init__(self) -> None:
        clamped = min(max(self.batch_size, _MIN_BATCH_SIZE), _MAX_BATCH_SIZE)
        if clamped != self.batch_size:
            logger.warning(
                "batch_size %d outside %d..%d; using %d",
                self.batch_size,
                _MIN_BATCH_SIZE,
                _MAX_BATCH_SIZE,
                clamped,
            )
            object.__setattr__(self, "batch_size", clamped)

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Build config from environment variables (call load_dotenv() first)."""
        return cls(
            api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            model=os.environ.get("MAILLEDGER_MODEL", cls.model),
            db_path=Path(os.environ.get("MAILLEDGER_DB_PATH", str(cls.db_path))),
            user_id=os.environ.get("MAILLEDGER_USER_ID", cls.user_id),
            ai_min_confidence=_env_float("AI_MIN_CONFIDENCE", cls.ai_min_confidence),
            regex_min_score=_env_float("REGEX_MIN_SCORE", cls.regex_min_score),
            body_char_limit=_env_int("ANALYSIS_BODY_CHARS", cls.body_char_limit),
            cache_ttl_hours=_env_float("ANALYSIS_CACHE_TTL_HOURS", cls.cache_ttl_hours),
            freshness_days=_env_int("ANALYSIS_FRESHNESS_DAYS", cls.freshness_days),
            batch_size=_env_int("ANALYSIS_BATCH_SIZE", cls.batch_size),
            batch_delay_seconds=_env_float(
                "ANALYSIS_BATCH_DELAY_SECONDS", cls.batch_delay_seconds
            ),
            max_retries=_env_int("ANALYSIS_MAX_RETRIES", cls.max_retries),
            dedup_window_days=_env_float("DEDUP_WINDOW_DAYS", cls.dedup_window_days),
            amount_tolerance=_env_float("DEDUP_AMOUNT_TOLERANCE", cls.amount_tolerance),
            spool_dir=Path(os.environ.get("MAILLEDGER_SPOOL_DIR", str(cls.spool_dir))),
            poll_interval_seconds=_env_int(
                "POLL_INTERVAL_SECONDS", cls.poll_interval_seconds
            ),
            maintenance_time=os.environ.get("MAINTENANCE_TIME", cls.maintenance_time),
        )
