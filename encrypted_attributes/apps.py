"""
Encrypted Attributes App Configuration
"""
from django.apps import AppConfig


class EncryptedAttributesConfig(AppConfig):
    """Configuration for the encrypted attributes framework."""

    name = 'encrypted_attributes'
    verbose_name = 'Encrypted Attributes'

    def ready(self):
        """Validate encryption settings at startup."""
        from .utils import validate_encryption_config
        validate_encryption_config()
