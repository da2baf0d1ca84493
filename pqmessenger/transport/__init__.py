"""
Transport module - Key directory and envelope relay collaborators.
"""

from pqmessenger.transport.base import DeliveryReceipt, Envelope, Transport
from pqmessenger.transport.http import HttpTransport
from pqmessenger.transport.memory import InMemoryTransport

__all__ = [
    "DeliveryReceipt",
    "Envelope",
    "Transport",
    "HttpTransport",
    "InMemoryTransport",
]
