"""
Web module - Relay server for public keys and sealed envelopes.
"""

from pqmessenger.web.relay import RelayStore, create_app

__all__ = ["RelayStore", "create_app"]
