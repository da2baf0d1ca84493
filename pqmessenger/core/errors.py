"""
Messenger Errors
================

Typed failures raised by the session layer.

Every cryptographic or lookup failure surfaces as one of these. Library
exceptions are chained onto them, never swallowed.
"""

from __future__ import annotations


class MessengerError(Exception):
    """Base exception for all messenger errors."""
    pass


# KEM provider

class ProviderInitError(MessengerError):
    """KEM backend could not be constructed, or was used after close."""
    pass


class KeyGenError(MessengerError):
    """Keypair generation failed."""
    pass


class EncapsulationError(MessengerError):
    """KEM encapsulation failed."""
    pass


class DecapsulationError(MessengerError):
    """KEM decapsulation failed."""
    pass


class InvalidKeyLengthError(MessengerError, ValueError):
    """Key, ciphertext or secret does not have the algorithm's fixed length."""
    pass


# Identities and peers

class DuplicateIdentityError(MessengerError):
    """Identity already has a keypair."""
    pass


class UnknownIdentityError(MessengerError):
    """No keypair exists for the identity."""
    pass


class UnknownRecipientError(MessengerError):
    """Recipient public key could not be resolved."""
    pass


class NoSharedSecretError(MessengerError):
    """No secret is established for the sender and none can be derived."""
    pass


class MisaddressedEnvelopeError(MessengerError):
    """Envelope is addressed to a different identity."""
    pass


class NotLoggedInError(MessengerError):
    """Session operation invoked before login."""
    pass


class AlreadyLoggedInError(MessengerError):
    """login() called while another identity is logged in."""
    pass


# Message cipher

class EncryptionError(MessengerError):
    """AEAD encryption failed."""
    pass


class DecryptionError(MessengerError):
    """AEAD decryption or authentication failed."""
    pass


class InvalidEncodingError(MessengerError):
    """Envelope text is not valid base64."""
    pass


class InvalidUtf8Error(MessengerError):
    """Decrypted bytes are not valid UTF-8 text."""
    pass


# Collaborators

class TransportError(MessengerError):
    """Transport collaborator failed to publish, look up or deliver."""
    pass


class ConfigError(MessengerError, ValueError):
    """Invalid configuration value."""
    pass
