"""Rich, structured console output for braid.

Usage:
    from braid.console import logger

    logger.info("Loading checkpoint...")
    logger.success("Saved merge layer")
    logger.warning("Summed deltas are not the product-rule gradient")

    # Structured output
    logger.header("Merge check", "3 branches")
    logger.key_value({"run": True, "owns_layer": True})
"""
from braid.console.logger import Logger, get_logger

# Module-level singleton for convenient import
logger = get_logger()

__all__ = ["Logger", "get_logger", "logger"]
