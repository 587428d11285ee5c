"""Logging configuration module for the School Orchestrator."""

from school_orchestrator.logging.setup import get_logger, setup_logging

__all__ = ["get_logger", "setup_logging"]
