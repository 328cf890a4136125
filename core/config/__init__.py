# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# CREATED: 18 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized policy constants and defaults for the job queue.
"""

from core.config.defaults import (
    MAX_RETRIES,
    SCHEMA_VERSION,
    SUPPORTED_SCHEMA_MAJOR,
    PriorityDefaults,
    QueueDefaults,
)

__all__ = [
    "MAX_RETRIES",
    "SCHEMA_VERSION",
    "SUPPORTED_SCHEMA_MAJOR",
    "PriorityDefaults",
    "QueueDefaults",
]
