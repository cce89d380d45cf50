"""
Test doubles for cipher providers.
"""

from encrypted_attributes.backends import CipherProvider


class RecordingProvider(CipherProvider):
    """
    Reversible, keyless provider that records every call.

    Ciphertext is ``b'enc:' + reversed plaintext``.
    """

    requires_key = False

    def __init__(self):
        self.calls = []

    def encrypt(self, value, options):
        self.calls.append(('encrypt', value, dict(options.cipher_params)))
        return b'enc:' + value[::-1]

    def decrypt(self, value, options):
        self.calls.append(('decrypt', value, dict(options.cipher_params)))
        if not value.startswith(b'enc:'):
            raise ValueError("not produced by RecordingProvider")
        return value[4:][::-1]


class XorProvider:
    """
    Duck-typed provider with custom entry points, keyed by a single byte.
    """

    def scramble(self, value, options):
        secret = options.cipher_params['secret'][0]
        return bytes(b ^ secret for b in value)

    def unscramble(self, value, options):
        return self.scramble(value, options)


class TextProvider(RecordingProvider):
    """Provider returning text instead of bytes."""

    def encrypt(self, value, options):
        return super().encrypt(value, options).decode('utf-8')


class BrokenProvider(RecordingProvider):
    """Provider returning something that is neither text nor bytes."""

    def decrypt(self, value, options):
        return 42
