"""
Core module - Configuration, logging, errors and the messaging core.
"""

from pqmessenger.core.config import MessengerConfig
from pqmessenger.core.errors import MessengerError
from pqmessenger.core.logging import get_secure_logger, SecureLogFilter

__all__ = ["MessengerConfig", "MessengerError", "get_secure_logger", "SecureLogFilter"]
