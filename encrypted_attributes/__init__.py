"""
Attribute-level encryption for arbitrary Python objects.

Declared attributes are encrypted on write and decrypted on read, while the
object only ever stores ciphertext in a separate storage attribute:

    from encrypted_attributes import declare

    class User:
        pass

    declare(User, 'ssn', key='k1', encode=True)

Keys and conditions may be literals, ``MethodRef`` names or callables,
resolved on every access. Ciphers are delegated to swappable providers
(AES and Fernet built in).
"""

from .accessors import (
    EncryptedAttribute,
    EncryptedAttributesMixin,
    attribute_spec,
    declare,
    decrypt_attribute,
    encrypt_attribute,
    encrypted,
    encrypted_attributes,
    is_attr_encrypted,
    translate_lookup,
)
from .backends import (
    AESCipherProvider,
    CipherProvider,
    FernetCipherProvider,
    get_cipher_provider,
    reset_cipher_providers,
)
from .exceptions import (
    DeclarationError,
    DecryptionError,
    EncryptedAttributeError,
    EncryptionConfigurationError,
    EncryptionError,
    ResolutionError,
    TransformError,
)
from .options import AttributeSpec, OptionLayer, effective_layers, set_default
from .resolvers import CallableRef, Literal, MethodRef, ResolvedOptions, resolve
from .utils import generate_encryption_key, validate_encryption_config

__all__ = [
    # Declaration
    'declare',
    'encrypted',
    'set_default',
    'EncryptedAttributesMixin',
    'EncryptedAttribute',

    # Introspection and helpers
    'attribute_spec',
    'effective_layers',
    'encrypted_attributes',
    'is_attr_encrypted',
    'encrypt_attribute',
    'decrypt_attribute',
    'translate_lookup',

    # Options
    'AttributeSpec',
    'OptionLayer',
    'ResolvedOptions',
    'resolve',
    'Literal',
    'MethodRef',
    'CallableRef',

    # Providers
    'CipherProvider',
    'AESCipherProvider',
    'FernetCipherProvider',
    'get_cipher_provider',
    'reset_cipher_providers',

    # Configuration
    'generate_encryption_key',
    'validate_encryption_config',

    # Exceptions
    'EncryptedAttributeError',
    'DeclarationError',
    'ResolutionError',
    'TransformError',
    'EncryptionError',
    'DecryptionError',
    'EncryptionConfigurationError',
]

# Version info
__version__ = '1.0.0'
