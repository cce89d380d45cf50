"""
Cipher provider implementations.

A cipher provider performs the actual symmetric transform for an encrypted
attribute. Providers receive plaintext/ciphertext as bytes together with the
``ResolvedOptions`` of the call, and read their parameters from
``options.cipher_params`` (the key under ``secret_key_param_name``, the
``algorithm`` and any extra options, forwarded verbatim).
"""

import base64
import logging
import os
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any, Dict, Mapping, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from django.utils.encoding import force_bytes
from django.utils.module_loading import import_string

from .exceptions import (
    DecryptionError,
    DeclarationError,
    EncryptionConfigurationError,
    EncryptionError,
)
from .utils import get_setting

logger = logging.getLogger(__name__)

DEFAULT_ALGORITHM = 'aes-256-cbc'
DEFAULT_KDF_SALT = b'encrypted_attributes_kdf_salt_v1'
DEFAULT_KDF_ITERATIONS = 100_000

# algorithm name -> (key length in bytes, mode)
AES_ALGORITHMS: Dict[str, Tuple[int, str]] = {
    'aes-128-cbc': (16, 'cbc'),
    'aes-192-cbc': (24, 'cbc'),
    'aes-256-cbc': (32, 'cbc'),
    'aes-128-gcm': (16, 'gcm'),
    'aes-192-gcm': (24, 'gcm'),
    'aes-256-gcm': (32, 'gcm'),
}

BLOCK_SIZE = 16
GCM_NONCE_SIZE = 12
GCM_TAG_SIZE = 16


class CipherProvider(ABC):
    """
    Contract for cipher providers.

    Subclasses implement ``encrypt`` and ``decrypt``. Providers that can run
    without key material set ``requires_key`` to False.
    """

    requires_key = True

    @abstractmethod
    def encrypt(self, value: bytes, options) -> bytes:
        """Encrypt ``value`` using the parameters in ``options.cipher_params``."""

    @abstractmethod
    def decrypt(self, value: bytes, options) -> bytes:
        """Decrypt ``value`` using the parameters in ``options.cipher_params``."""


@lru_cache(maxsize=256)
def derive_key(secret: bytes, salt: bytes, length: int, iterations: int) -> bytes:
    """Stretch arbitrary key material to ``length`` bytes with PBKDF2-HMAC-SHA256."""
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        iterations=iterations,
        backend=default_backend()
    )
    return kdf.derive(secret)


def _secret_from(params: Mapping[str, Any], name: str = 'key') -> bytes:
    """Key material stored under ``name`` (the ``secret_key_param_name`` option)."""
    key = params.get(name)
    if key is None or key == '' or key == b'':
        raise EncryptionError("No encryption key provided")
    return force_bytes(key)


def _stretch(secret: bytes, params: Mapping[str, Any], length: int) -> bytes:
    salt = force_bytes(params.get('salt') or DEFAULT_KDF_SALT)
    iterations = get_setting('ENCRYPTED_ATTRIBUTES_KDF_ITERATIONS', DEFAULT_KDF_ITERATIONS)
    return derive_key(secret, salt, length, iterations)


class AESCipherProvider(CipherProvider):
    """
    AES backend supporting CBC (PKCS7 padded) and GCM modes.

    CBC uses, in order of preference, an explicit ``iv`` option, a random IV
    prepended to the ciphertext when ``random_iv`` is set, or an IV derived
    from the key. The derived IV makes encryption deterministic, which is what
    allows encrypted values to be looked up by equality.

    GCM always uses a random nonce: output is ``nonce || ciphertext || tag``.
    """

    def _algorithm(self, params: Mapping[str, Any]) -> Tuple[int, str]:
        algorithm = (params.get('algorithm') or DEFAULT_ALGORITHM).lower()
        if algorithm not in AES_ALGORITHMS:
            raise EncryptionConfigurationError(f"Unsupported algorithm: {algorithm}")
        return AES_ALGORITHMS[algorithm]

    def _key(self, params: Mapping[str, Any], length: int, name: str) -> bytes:
        secret = _secret_from(params, name)
        if len(secret) == length:
            return secret
        return _stretch(secret, params, length)

    def _derived_iv(self, key: bytes) -> bytes:
        h = hmac.HMAC(key, hashes.SHA256(), backend=default_backend())
        h.update(b'encrypted_attributes_iv')
        return h.finalize()[:BLOCK_SIZE]

    def _explicit_iv(self, params: Mapping[str, Any]):
        iv = params.get('iv')
        if iv is None:
            return None
        iv = force_bytes(iv)
        if len(iv) != BLOCK_SIZE:
            raise EncryptionError(f"iv must be {BLOCK_SIZE} bytes")
        return iv

    def encrypt(self, value: bytes, options) -> bytes:
        """
        Encrypt bytes using the configured AES mode.

        Raises:
            EncryptionError: If encryption fails
            EncryptionConfigurationError: If the algorithm is not supported
        """
        params = options.cipher_params
        length, mode = self._algorithm(params)
        key = self._key(params, length, options.secret_key_param_name)

        if mode == 'gcm':
            return self._encrypt_gcm(value, key, params)

        prefix = b''
        iv = self._explicit_iv(params)
        if iv is None:
            if params.get('random_iv'):
                iv = os.urandom(BLOCK_SIZE)
                prefix = iv
            else:
                iv = self._derived_iv(key)

        try:
            padder = padding.PKCS7(BLOCK_SIZE * 8).padder()
            padded = padder.update(value) + padder.finalize()
            encryptor = Cipher(
                algorithms.AES(key),
                modes.CBC(iv),
                backend=default_backend()
            ).encryptor()
            return prefix + encryptor.update(padded) + encryptor.finalize()
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Failed to encrypt data: {str(e)}") from e

    def decrypt(self, value: bytes, options) -> bytes:
        """
        Decrypt bytes produced by ``encrypt``.

        Raises:
            DecryptionError: If the ciphertext is malformed or the key is wrong
        """
        params = options.cipher_params
        length, mode = self._algorithm(params)
        key = self._key(params, length, options.secret_key_param_name)

        if mode == 'gcm':
            return self._decrypt_gcm(value, key, params)

        iv = self._explicit_iv(params)
        if iv is None:
            if params.get('random_iv'):
                iv, value = value[:BLOCK_SIZE], value[BLOCK_SIZE:]
            else:
                iv = self._derived_iv(key)

        if not value or len(value) % BLOCK_SIZE or len(iv) != BLOCK_SIZE:
            raise DecryptionError("Ciphertext length is not a multiple of the block size")

        try:
            decryptor = Cipher(
                algorithms.AES(key),
                modes.CBC(iv),
                backend=default_backend()
            ).decryptor()
            padded = decryptor.update(value) + decryptor.finalize()
            unpadder = padding.PKCS7(BLOCK_SIZE * 8).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except (TypeError, ValueError) as e:
            raise DecryptionError(f"Failed to decrypt data: {str(e)}") from e

    def _encrypt_gcm(self, value: bytes, key: bytes, params: Mapping[str, Any]) -> bytes:
        nonce = os.urandom(GCM_NONCE_SIZE)
        try:
            encryptor = Cipher(
                algorithms.AES(key),
                modes.GCM(nonce),
                backend=default_backend()
            ).encryptor()
            if params.get('auth_data'):
                encryptor.authenticate_additional_data(force_bytes(params['auth_data']))
            ciphertext = encryptor.update(value) + encryptor.finalize()
            return nonce + ciphertext + encryptor.tag
        except (TypeError, ValueError) as e:
            raise EncryptionError(f"Failed to encrypt data: {str(e)}") from e

    def _decrypt_gcm(self, value: bytes, key: bytes, params: Mapping[str, Any]) -> bytes:
        if len(value) < GCM_NONCE_SIZE + GCM_TAG_SIZE:
            raise DecryptionError("Ciphertext is too short")

        nonce = value[:GCM_NONCE_SIZE]
        tag = value[-GCM_TAG_SIZE:]
        ciphertext = value[GCM_NONCE_SIZE:-GCM_TAG_SIZE]
        try:
            decryptor = Cipher(
                algorithms.AES(key),
                modes.GCM(nonce, tag),
                backend=default_backend()
            ).decryptor()
            if params.get('auth_data'):
                decryptor.authenticate_additional_data(force_bytes(params['auth_data']))
            return decryptor.update(ciphertext) + decryptor.finalize()
        except (InvalidTag, TypeError, ValueError) as e:
            raise DecryptionError(f"Failed to decrypt data: {e!r}") from e


class FernetCipherProvider(CipherProvider):
    """
    Alternative backend using Fernet symmetric encryption.

    Accepts a Fernet key directly; any other key material is stretched into
    one. Fernet tokens embed a random IV and a timestamp, so output is never
    deterministic.
    """

    def _get_fernet(self, options) -> Fernet:
        params = options.cipher_params
        secret = _secret_from(params, options.secret_key_param_name)
        try:
            return Fernet(secret)
        except (TypeError, ValueError):
            # Not a Fernet key, derive one
            return Fernet(base64.urlsafe_b64encode(_stretch(secret, params, 32)))

    def encrypt(self, value: bytes, options) -> bytes:
        """Encrypt using Fernet."""
        try:
            return self._get_fernet(options).encrypt(value)
        except TypeError as e:
            raise EncryptionError(f"Fernet encryption failed: {str(e)}") from e

    def decrypt(self, value: bytes, options) -> bytes:
        """Decrypt using Fernet."""
        try:
            return self._get_fernet(options).decrypt(value)
        except (InvalidToken, TypeError) as e:
            raise DecryptionError(f"Fernet decryption failed: {e!r}") from e


BUILTIN_PROVIDERS = {
    'aes': 'encrypted_attributes.backends.AESCipherProvider',
    'fernet': 'encrypted_attributes.backends.FernetCipherProvider',
}

# Named provider instances, created on first use
_provider_instances: Dict[str, Any] = {}


def _load_provider(name: str) -> Any:
    paths = dict(BUILTIN_PROVIDERS)
    paths.update(get_setting('ENCRYPTED_ATTRIBUTES_PROVIDERS', {}))
    path = paths.get(name, name)

    if '.' not in path:
        raise DeclarationError(f"Unknown cipher provider: {name}")

    try:
        provider = import_string(path)
    except ImportError as e:
        raise DeclarationError(f"Cannot import cipher provider {path}: {e}") from e

    if isinstance(provider, type):
        provider = provider()

    logger.info(f"Loaded cipher provider '{name}' from {path}")
    return provider


def get_cipher_provider(provider: Any = None) -> Any:
    """
    Get a cipher provider instance.

    Args:
        provider: A registered name, a dotted import path, a provider class
            or a provider object. Defaults to the AES provider.

    Returns:
        Provider instance
    """
    if provider is None:
        provider = 'aes'

    if isinstance(provider, str):
        if provider not in _provider_instances:
            _provider_instances[provider] = _load_provider(provider)
        return _provider_instances[provider]

    if isinstance(provider, type):
        return provider()

    return provider


def reset_cipher_providers():
    """
    Reset cached provider instances (useful for testing).
    """
    _provider_instances.clear()
    derive_key.cache_clear()
