"""
Trust Engine Configuration
Single source of truth for thresholds & runtime settings.

The thresholds are defaults, not contract constants: every value can be
overridden via environment (TrustThresholds.from_env) or by constructing
TrustThresholds directly.
"""

import os
from dataclasses import dataclass

# =========================
# Trust levels
# =========================

MIN_TRUST_LEVEL = 1
MAX_TRUST_LEVEL = 3

TRUST_LEVEL_NAMES = {
    1: "Suggest-only",
    2: "Assisted",
    3: "Autonomous",
}

# =========================
# Defaults
# =========================

DEFAULT_MIN_SAMPLE = 10             # outcomes required at a level before promotion
DEFAULT_PROMOTION_THRESHOLD = 90    # confidence % required for promotion
DEFAULT_DEMOTION_THRESHOLD = 3      # consecutive failures that trigger demotion
DEFAULT_STORAGE_TIMEOUT_SECONDS = 5.0
DEFAULT_CONFLICT_RETRIES = 3
DEFAULT_AUDIT_MAX_LIMIT = 500

ADMIN_OVERRIDE_ACTOR = "admin-override"
TRANSITION_ACTOR = "trust-engine"


def trust_level_name(level: int) -> str:
    return TRUST_LEVEL_NAMES.get(level, f"Level {level}")


@dataclass(frozen=True)
class TrustThresholds:
    """Tunable promotion / demotion thresholds and storage settings."""
    min_sample: int = DEFAULT_MIN_SAMPLE
    promotion_threshold: int = DEFAULT_PROMOTION_THRESHOLD
    demotion_threshold: int = DEFAULT_DEMOTION_THRESHOLD
    storage_timeout_seconds: float = DEFAULT_STORAGE_TIMEOUT_SECONDS
    conflict_retries: int = DEFAULT_CONFLICT_RETRIES
    audit_query_max_limit: int = DEFAULT_AUDIT_MAX_LIMIT

    def __post_init__(self):
        if self.min_sample < 1:
            raise ValueError(f"min_sample must be >= 1, got {self.min_sample}")
        if not 0 <= self.promotion_threshold <= 100:
            raise ValueError(
                f"promotion_threshold must be within [0, 100], got {self.promotion_threshold}"
            )
        if self.demotion_threshold < 1:
            raise ValueError(f"demotion_threshold must be >= 1, got {self.demotion_threshold}")
        if self.storage_timeout_seconds <= 0:
            raise ValueError(
                f"storage_timeout_seconds must be > 0, got {self.storage_timeout_seconds}"
            )
        if self.conflict_retries < 1:
            raise ValueError(f"conflict_retries must be >= 1, got {self.conflict_retries}")
        if self.audit_query_max_limit < 1:
            raise ValueError(
                f"audit_query_max_limit must be >= 1, got {self.audit_query_max_limit}"
            )

    @classmethod
    def from_env(cls) -> "TrustThresholds":
        """
        Read overrides from the environment:

            TRUST_MIN_SAMPLE, TRUST_PROMOTION_THRESHOLD, TRUST_DEMOTION_THRESHOLD,
            TRUST_STORAGE_TIMEOUT_SECONDS, TRUST_CONFLICT_RETRIES, TRUST_AUDIT_MAX_LIMIT
        """
        return cls(
            min_sample=int(os.getenv("TRUST_MIN_SAMPLE", DEFAULT_MIN_SAMPLE)),
            promotion_threshold=int(os.getenv("TRUST_PROMOTION_THRESHOLD", DEFAULT_PROMOTION_THRESHOLD)),
            demotion_threshold=int(os.getenv("TRUST_DEMOTION_THRESHOLD", DEFAULT_DEMOTION_THRESHOLD)),
            storage_timeout_seconds=float(
                os.getenv("TRUST_STORAGE_TIMEOUT_SECONDS", DEFAULT_STORAGE_TIMEOUT_SECONDS)
            ),
            conflict_retries=int(os.getenv("TRUST_CONFLICT_RETRIES", DEFAULT_CONFLICT_RETRIES)),
            audit_query_max_limit=int(os.getenv("TRUST_AUDIT_MAX_LIMIT", DEFAULT_AUDIT_MAX_LIMIT)),
        )
