"""
Custom exceptions for the encrypted attributes framework.
"""


class EncryptedAttributeError(Exception):
    """Base exception for all encrypted attribute errors."""
    pass


class DeclarationError(EncryptedAttributeError):
    """Raised when an encrypted attribute declaration is invalid."""
    pass


class ResolutionError(EncryptedAttributeError):
    """Raised when a key or predicate cannot be resolved for a call."""
    pass


class TransformError(EncryptedAttributeError):
    """
    Raised when a stage of the transform pipeline fails.

    The failing stage is available as ``stage`` (one of ``marshal``,
    ``encrypt``, ``encode``, ``decode``, ``decrypt`` or ``unmarshal``).
    """

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"{stage} failed: {message}")


class EncryptionError(EncryptedAttributeError):
    """Raised by the built-in cipher providers when encryption fails."""
    pass


class DecryptionError(EncryptionError):
    """Raised when decryption fails."""
    pass


class EncryptionConfigurationError(EncryptionError):
    """Raised when encryption is misconfigured."""
    pass
