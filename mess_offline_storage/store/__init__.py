"""
Embedded SQLite store: schema, codec, engine and recovery ladder.
"""

from .engine import DEFAULT_CACHE_TTL, StoreEngine
from .lock import CooperativeLock
from .recovery import (
    Bypass,
    EmergencyReset,
    HardReset,
    RecoveryOutcome,
    RecoveryPolicy,
    RecoveryStrategy,
    SoftReset,
)
from .schema import BUSINESS_TABLES, SCHEMA_VERSION, Filter, Table

__all__ = [
    "BUSINESS_TABLES",
    "Bypass",
    "CooperativeLock",
    "DEFAULT_CACHE_TTL",
    "EmergencyReset",
    "Filter",
    "HardReset",
    "RecoveryOutcome",
    "RecoveryPolicy",
    "RecoveryStrategy",
    "SCHEMA_VERSION",
    "SoftReset",
    "StoreEngine",
    "Table",
]
