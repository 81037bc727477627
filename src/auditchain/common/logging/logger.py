"""Centralized logging configuration."""

import logging

# Severities the audit core emits beyond the stdlib set.
SECURITY = 45
AUDIT = 25

logging.addLevelName(SECURITY, "SECURITY")
logging.addLevelName(AUDIT, "AUDIT")


def get_logger(name: str, level: str = "INFO") -> logging.Logger:
    """Get a configured logger instance."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.getLevelName(level.upper()))
    
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    
    return logger
