"""Centralized constants for MailPilot."""


# ===== AUDIT & LOGGING =====
class AuditConstants:
    HASH_ALGORITHM = "sha256"
    STEP_LOG_PATTERN = "agent_steps_{date}.jsonl"
    DEFAULT_LIST_LIMIT = 100
    MAX_INDEXED_STEPS = 10_000


# ===== DELIBERATION =====
class DeliberationConstants:
    AGGREGATE_PRECISION = 4
    MAX_WORKER_THREADS = 8
    PLANNER_TOOL = "plan"
    WORKER_TOOL = "interpret"
    CRITIC_TOOL = "critique"
    ARBITER_TOOL = "arbitrate"
    MEMORY_TOOL = "memory_extract"
    LANGUAGE_TOOL = "language_detect"


# ===== CONFIRMATION LINKS =====
class LinkConstants:
    ROUTE_PREFIX = "/a"
    PURPOSE_CONFIRM = "confirm"
    PURPOSE_CANCEL = "cancel"
    PURPOSE_CHOOSE = "choose"
    CANCELLED_REASON = "cancelled"


# ===== MEMORY =====
class MemoryConstants:
    REDACTED = "[REDACTED]"
    MAX_KEY_LENGTH = 200


# ===== MONITORING =====
class MonitoringConstants:
    LATENCY_PERCENTILE = 95
    GROUNDEDNESS_MIN_CRITIC_SCORE = 0.6
    DEFAULT_WINDOW_LIMIT = 500
