"""Utility modules"""
from .logger import get_logger, setup_logging, set_correlation_id, get_correlation_id
from .idgen import INSTANCE_PREFIX, generate_id, generate_instance_id
from .time import utc_now, ensure_utc, format_iso, elapsed_ms

__all__ = [
    "get_logger",
    "setup_logging",
    "set_correlation_id",
    "get_correlation_id",
    "INSTANCE_PREFIX",
    "generate_id",
    "generate_instance_id",
    "utc_now",
    "ensure_utc",
    "format_iso",
    "elapsed_ms",
]
