"""
Transform pipeline around the cipher provider.

Write path:  value -> marshal -> encrypt -> encode -> stored
Read path:   stored -> decode -> decrypt -> unmarshal -> value

Absent values (None, and empty strings unless ``allow_empty_value`` is set)
pass through both paths untouched without reaching the provider.
"""

import base64
import binascii
import json
from typing import Any, Callable, Dict, Optional, Tuple

from .exceptions import DeclarationError, TransformError
from .resolvers import ResolvedOptions
from .utils import EncryptionJSONEncoder


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def _b64decode(text: bytes) -> bytes:
    return base64.b64decode(text, validate=True)


def _urlsafe_b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii')


def _urlsafe_b64decode(text: bytes) -> bytes:
    return base64.b64decode(text, altchars=b'-_', validate=True)


def _b32encode(data: bytes) -> str:
    return base64.b32encode(data).decode('ascii')


def _hexencode(data: bytes) -> str:
    return binascii.hexlify(data).decode('ascii')


# format name -> (encode, decode)
ENCODINGS: Dict[str, Tuple[Callable[[bytes], str], Callable[[bytes], bytes]]] = {
    'base64': (_b64encode, _b64decode),
    'urlsafe_base64': (_urlsafe_b64encode, _urlsafe_b64decode),
    'base32': (_b32encode, base64.b32decode),
    'hex': (_hexencode, binascii.unhexlify),
}


class JSONMarshaler:
    """Default marshaler serializing structured values as JSON text."""

    def dumps(self, value: Any) -> str:
        return json.dumps(value, cls=EncryptionJSONEncoder)

    def loads(self, value):
        return json.loads(value)


DEFAULT_MARSHALER = JSONMarshaler()


def validate_encoding(encode: Optional[str]) -> None:
    """
    Raises:
        DeclarationError: If ``encode`` names an unknown format
    """
    if encode is not None and encode not in ENCODINGS:
        raise DeclarationError(
            f"Unknown encode format '{encode}', expected one of {sorted(ENCODINGS)}"
        )


def is_absent(value: Any, allow_empty_value: bool = False) -> bool:
    if value is None:
        return True
    if allow_empty_value:
        return False
    return isinstance(value, (str, bytes)) and len(value) == 0


def _marshaler(options: ResolvedOptions):
    return options.marshaler if options.marshaler is not None else DEFAULT_MARSHALER


def _call_provider(options: ResolvedOptions, stage: str, value: bytes) -> bytes:
    name = options.encrypt_method if stage == 'encrypt' else options.decrypt_method
    method = getattr(options.provider, name, None)
    if not callable(method):
        raise TransformError(stage, f"cipher provider has no method '{name}'")

    # Provider errors propagate as raised
    result = method(value, options)

    if isinstance(result, str):
        return result.encode('utf-8')
    if isinstance(result, (bytes, bytearray, memoryview)):
        return bytes(result)
    raise TransformError(stage, f"cipher provider returned {type(result).__name__}, expected bytes")


def encrypt_value(value: Any, options: ResolvedOptions) -> Any:
    """
    Run the write path for ``value``.

    Raises:
        TransformError: If marshalling, encoding, or plaintext conversion fails
    """
    if is_absent(value, options.allow_empty_value):
        return value

    if options.marshal:
        marshaler = _marshaler(options)
        try:
            value = getattr(marshaler, options.dump_method)(value)
        except Exception as e:
            raise TransformError('marshal', str(e)) from e

    if isinstance(value, str):
        plaintext = value.encode('utf-8')
    elif isinstance(value, (bytes, bytearray, memoryview)):
        plaintext = bytes(value)
    else:
        raise TransformError(
            'encrypt',
            f"cannot encrypt {type(value).__name__} without marshal enabled"
        )

    ciphertext = _call_provider(options, 'encrypt', plaintext)

    if options.encode:
        validate_encoding(options.encode)
        try:
            return ENCODINGS[options.encode][0](ciphertext)
        except (TypeError, ValueError) as e:
            raise TransformError('encode', str(e)) from e

    return ciphertext


def decrypt_value(value: Any, options: ResolvedOptions) -> Any:
    """
    Run the read path for a stored ``value``.

    Raises:
        TransformError: If decoding, text conversion, or unmarshalling fails
    """
    if is_absent(value, options.allow_empty_value):
        return value

    if options.encode:
        validate_encoding(options.encode)
        try:
            text = value.encode('ascii') if isinstance(value, str) else bytes(value)
            ciphertext = ENCODINGS[options.encode][1](text)
        except (TypeError, ValueError) as e:
            # binascii.Error and UnicodeEncodeError are ValueErrors
            raise TransformError('decode', f"malformed {options.encode} text: {e}") from e
    elif isinstance(value, (bytes, bytearray, memoryview)):
        ciphertext = bytes(value)
    else:
        raise TransformError(
            'decrypt',
            f"stored {type(value).__name__} is not ciphertext bytes; enable encode for text storage"
        )

    plaintext = _call_provider(options, 'decrypt', ciphertext)

    if not options.binary:
        try:
            plaintext = plaintext.decode('utf-8')
        except UnicodeDecodeError as e:
            # Binary marshalers (pickle) get their dump output back as bytes
            if not options.marshal:
                raise TransformError('decrypt', f"plaintext is not valid UTF-8: {e}") from e

    if options.marshal:
        marshaler = _marshaler(options)
        try:
            return getattr(marshaler, options.load_method)(plaintext)
        except Exception as e:
            raise TransformError('unmarshal', str(e)) from e

    return plaintext
