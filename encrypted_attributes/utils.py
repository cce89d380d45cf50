"""
Utility functions for the encrypted attributes framework.
"""

import base64
import logging
import os
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder

logger = logging.getLogger(__name__)


class EncryptionJSONEncoder(DjangoJSONEncoder):
    """Extended JSON encoder for marshalled values that handles more types."""

    def default(self, o):
        if isinstance(o, Decimal):
            return str(o)
        elif isinstance(o, (datetime, date)):
            return o.isoformat()
        elif isinstance(o, (set, frozenset)):
            return sorted(o)
        return super().default(o)


def get_setting(name: str, default: Any = None) -> Any:
    """
    Read a Django setting, falling back to ``default``.

    The package can be used outside of a configured Django project, in which
    case every setting takes its default value.
    """
    if not settings.configured:
        return default
    return getattr(settings, name, default)


def validate_encryption_config():
    """
    Validate that the encrypted attributes settings are usable.

    Raises:
        EncryptionConfigurationError: If configuration is invalid
    """
    from .backends import get_cipher_provider
    from .exceptions import DeclarationError, EncryptionConfigurationError

    defaults = get_setting('ENCRYPTED_ATTRIBUTES_DEFAULTS', {})
    if not isinstance(defaults, dict):
        raise EncryptionConfigurationError(
            "ENCRYPTED_ATTRIBUTES_DEFAULTS must be a dict"
        )

    providers = get_setting('ENCRYPTED_ATTRIBUTES_PROVIDERS', {})
    if not isinstance(providers, dict):
        raise EncryptionConfigurationError(
            "ENCRYPTED_ATTRIBUTES_PROVIDERS must be a dict"
        )
    for name, path in providers.items():
        if not isinstance(path, str):
            raise EncryptionConfigurationError(
                f"Provider '{name}' must be configured with a dotted path"
            )

    iterations = get_setting('ENCRYPTED_ATTRIBUTES_KDF_ITERATIONS', 100_000)
    if not isinstance(iterations, int) or iterations < 1:
        raise EncryptionConfigurationError(
            "ENCRYPTED_ATTRIBUTES_KDF_ITERATIONS must be a positive integer"
        )

    # The default provider must load
    provider = defaults.get('cipher_provider')
    if provider is not None:
        try:
            get_cipher_provider(provider)
        except DeclarationError as e:
            raise EncryptionConfigurationError(str(e)) from e

    logger.debug("Encrypted attributes configuration validated")


def generate_encryption_key() -> str:
    """
    Generate a new encryption key.

    Returns:
        Base64-encoded 256-bit key
    """
    key_bytes = os.urandom(32)  # 256 bits
    return base64.b64encode(key_bytes).decode('utf-8')
