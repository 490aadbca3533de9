"""
Structured logging for the zombie wallet index.

JSON logs with timestamp, event_type and wallet/owner/beneficiary context.
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_zombie.zombie_logging.logger import bind_wallet, get_logger

__all__ = ["bind_wallet", "get_logger"]
