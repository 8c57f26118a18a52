import logging


def get_logger(name: str) -> logging.Logger:
    """Get a logger beneath the package logger."""
    return logging.getLogger(f"mqttbridge.{name}")
