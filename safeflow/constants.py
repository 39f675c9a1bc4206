"""Shared defaults for the safeflow engine."""

DEFAULT_DUE_SOON_HOURS = 24
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0
DEFAULT_MAX_WRITE_ATTEMPTS = 3
DEFAULT_STEP_TIME_LIMIT_HOURS = 24
DEFAULT_INVESTIGATION_HOURS = 72

EVENT_TOPIC_PREFIX = "lifecycle"
SYSTEM_ACTOR = "system"
