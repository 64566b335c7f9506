"""Domain enumerations for strong typing & validation."""
from enum import Enum

class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    SKIPPED = "skipped"

class SyncOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    TOKEN_EXPIRED = "token_expired"

class CacheBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"
