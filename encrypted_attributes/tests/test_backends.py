"""
Tests for the built-in cipher providers and the provider registry.
"""

import os

from cryptography.fernet import Fernet
from django.test import SimpleTestCase, override_settings

from encrypted_attributes.backends import (
    AESCipherProvider,
    FernetCipherProvider,
    derive_key,
    get_cipher_provider,
    reset_cipher_providers,
)
from encrypted_attributes.exceptions import (
    DeclarationError,
    DecryptionError,
    EncryptionConfigurationError,
    EncryptionError,
)
from encrypted_attributes.utils import generate_encryption_key, validate_encryption_config

from .fakes import RecordingProvider
from .test_pipeline import make_options


class AESCipherProviderTests(SimpleTestCase):
    """Test AES in CBC and GCM modes."""

    def setUp(self):
        reset_cipher_providers()
        self.provider = AESCipherProvider()

    def tearDown(self):
        reset_cipher_providers()

    def options(self, **overrides):
        return make_options(self.provider, **overrides)

    def test_cbc_round_trip(self):
        options = self.options(key='k1')
        ciphertext = self.provider.encrypt(b'123-45-6789', options)

        self.assertNotEqual(ciphertext, b'123-45-6789')
        self.assertEqual(len(ciphertext) % 16, 0)
        self.assertEqual(self.provider.decrypt(ciphertext, options), b'123-45-6789')

    def test_cbc_is_deterministic_by_default(self):
        options = self.options(key='k1')
        self.assertEqual(
            self.provider.encrypt(b'same', options),
            self.provider.encrypt(b'same', options),
        )

    def test_random_iv_is_prepended(self):
        options = self.options(key='k1', extra_options={'random_iv': True})
        first = self.provider.encrypt(b'same', options)
        second = self.provider.encrypt(b'same', options)

        self.assertNotEqual(first, second)
        self.assertEqual(len(first), 32)
        self.assertEqual(self.provider.decrypt(first, options), b'same')
        self.assertEqual(self.provider.decrypt(second, options), b'same')

    def test_explicit_iv(self):
        options = self.options(key='k1', extra_options={'iv': b'0123456789abcdef'})
        ciphertext = self.provider.encrypt(b'value', options)

        self.assertNotEqual(ciphertext, self.provider.encrypt(b'value', self.options(key='k1')))
        self.assertEqual(self.provider.decrypt(ciphertext, options), b'value')

    def test_explicit_iv_length_is_checked(self):
        with self.assertRaises(EncryptionError):
            self.provider.encrypt(b'value', self.options(extra_options={'iv': b'short'}))

    def test_different_keys_give_different_ciphertext(self):
        first = self.provider.encrypt(b'plaintext', self.options(key=os.urandom(32)))
        second = self.provider.encrypt(b'plaintext', self.options(key=os.urandom(32)))
        self.assertNotEqual(first, second)

    def test_raw_key_of_exact_length_is_used_directly(self):
        key = os.urandom(16)
        options = self.options(key=key, algorithm='aes-128-cbc')
        ciphertext = self.provider.encrypt(b'value', options)
        self.assertEqual(self.provider.decrypt(ciphertext, options), b'value')

    def test_salt_changes_derived_key(self):
        salted = self.options(key='k1', extra_options={'salt': 'pepper'})
        self.assertNotEqual(
            self.provider.encrypt(b'value', salted),
            self.provider.encrypt(b'value', self.options(key='k1')),
        )

    def test_gcm_round_trip(self):
        for algorithm in ('aes-128-gcm', 'aes-256-gcm'):
            with self.subTest(algorithm=algorithm):
                options = self.options(key='k1', algorithm=algorithm)
                ciphertext = self.provider.encrypt(b'value', options)

                self.assertEqual(len(ciphertext), 12 + 5 + 16)
                self.assertEqual(self.provider.decrypt(ciphertext, options), b'value')

    def test_gcm_detects_tampering(self):
        options = self.options(key='k1', algorithm='aes-256-gcm')
        ciphertext = bytearray(self.provider.encrypt(b'value', options))
        ciphertext[13] ^= 0x01

        with self.assertRaises(DecryptionError):
            self.provider.decrypt(bytes(ciphertext), options)

    def test_gcm_auth_data_must_match(self):
        options = self.options(key='k1', algorithm='aes-256-gcm', extra_options={'auth_data': 'user:1'})
        ciphertext = self.provider.encrypt(b'value', options)

        self.assertEqual(self.provider.decrypt(ciphertext, options), b'value')
        with self.assertRaises(DecryptionError):
            self.provider.decrypt(
                ciphertext,
                self.options(key='k1', algorithm='aes-256-gcm', extra_options={'auth_data': 'user:2'}),
            )

    def test_truncated_ciphertext(self):
        with self.assertRaises(DecryptionError):
            self.provider.decrypt(b'short', self.options(key='k1'))
        with self.assertRaises(DecryptionError):
            self.provider.decrypt(b'short', self.options(key='k1', algorithm='aes-256-gcm'))

    def test_missing_key(self):
        with self.assertRaises(EncryptionError):
            self.provider.encrypt(b'value', self.options(key=None))

    def test_key_read_under_secret_key_param_name(self):
        options = self.options(key='k1', secret_key_param_name='password')
        ciphertext = self.provider.encrypt(b'value', options)

        self.assertEqual(ciphertext, self.provider.encrypt(b'value', self.options(key='k1')))
        self.assertEqual(self.provider.decrypt(ciphertext, options), b'value')

    def test_unsupported_algorithm(self):
        with self.assertRaises(EncryptionConfigurationError):
            self.provider.encrypt(b'value', self.options(key='k1', algorithm='des-ede3'))

    def test_key_derivation_is_cached(self):
        derive_key.cache_clear()
        options = self.options(key='k1')
        self.provider.encrypt(b'a', options)
        self.provider.encrypt(b'b', options)

        self.assertEqual(derive_key.cache_info().misses, 1)
        self.assertEqual(derive_key.cache_info().hits, 1)


class FernetCipherProviderTests(SimpleTestCase):
    """Test the Fernet provider."""

    def setUp(self):
        self.provider = FernetCipherProvider()

    def test_round_trip_with_fernet_key(self):
        key = Fernet.generate_key()
        options = make_options(self.provider, key=key)
        token = self.provider.encrypt(b'value', options)

        self.assertTrue(token.startswith(b'gAAAAA'))
        self.assertEqual(Fernet(key).decrypt(token), b'value')
        self.assertEqual(self.provider.decrypt(token, options), b'value')

    def test_round_trip_with_passphrase(self):
        options = make_options(self.provider, key='passphrase')
        token = self.provider.encrypt(b'value', options)
        self.assertEqual(self.provider.decrypt(token, options), b'value')

    def test_key_read_under_secret_key_param_name(self):
        key = Fernet.generate_key()
        options = make_options(self.provider, key=key, secret_key_param_name='password')
        token = self.provider.encrypt(b'value', options)

        self.assertEqual(Fernet(key).decrypt(token), b'value')

    def test_output_is_not_deterministic(self):
        options = make_options(self.provider, key='passphrase')
        self.assertNotEqual(
            self.provider.encrypt(b'value', options),
            self.provider.encrypt(b'value', options),
        )

    def test_wrong_key_fails(self):
        token = self.provider.encrypt(b'value', make_options(self.provider, key='one'))

        with self.assertRaises(DecryptionError):
            self.provider.decrypt(token, make_options(self.provider, key='two'))


class ProviderRegistryTests(SimpleTestCase):
    """Test provider lookup by name, path, class and instance."""

    def setUp(self):
        reset_cipher_providers()

    def tearDown(self):
        reset_cipher_providers()

    def test_builtin_names(self):
        self.assertIsInstance(get_cipher_provider(), AESCipherProvider)
        self.assertIsInstance(get_cipher_provider('aes'), AESCipherProvider)
        self.assertIsInstance(get_cipher_provider('fernet'), FernetCipherProvider)

    def test_named_providers_are_cached(self):
        self.assertIs(get_cipher_provider('aes'), get_cipher_provider('aes'))

    def test_dotted_path(self):
        provider = get_cipher_provider('encrypted_attributes.tests.fakes.RecordingProvider')
        self.assertIsInstance(provider, RecordingProvider)

    @override_settings(ENCRYPTED_ATTRIBUTES_PROVIDERS={
        'recording': 'encrypted_attributes.tests.fakes.RecordingProvider',
    })
    def test_settings_registered_name(self):
        self.assertIsInstance(get_cipher_provider('recording'), RecordingProvider)

    def test_class_and_instance(self):
        self.assertIsInstance(get_cipher_provider(RecordingProvider), RecordingProvider)
        provider = RecordingProvider()
        self.assertIs(get_cipher_provider(provider), provider)

    def test_unknown_provider(self):
        with self.assertRaises(DeclarationError):
            get_cipher_provider('rot13')
        with self.assertRaises(DeclarationError):
            get_cipher_provider('encrypted_attributes.tests.fakes.Missing')


class ConfigurationTests(SimpleTestCase):
    """Test settings validation."""

    def setUp(self):
        reset_cipher_providers()

    def tearDown(self):
        reset_cipher_providers()

    def test_valid_configuration(self):
        validate_encryption_config()

    @override_settings(ENCRYPTED_ATTRIBUTES_DEFAULTS=['encode'])
    def test_defaults_must_be_a_dict(self):
        with self.assertRaises(EncryptionConfigurationError):
            validate_encryption_config()

    @override_settings(ENCRYPTED_ATTRIBUTES_PROVIDERS={'custom': RecordingProvider})
    def test_providers_must_be_paths(self):
        with self.assertRaises(EncryptionConfigurationError):
            validate_encryption_config()

    @override_settings(ENCRYPTED_ATTRIBUTES_KDF_ITERATIONS=0)
    def test_iterations_must_be_positive(self):
        with self.assertRaises(EncryptionConfigurationError):
            validate_encryption_config()

    @override_settings(ENCRYPTED_ATTRIBUTES_DEFAULTS={'cipher_provider': 'rot13'})
    def test_default_provider_must_load(self):
        with self.assertRaises(EncryptionConfigurationError):
            validate_encryption_config()

    def test_generate_encryption_key(self):
        import base64

        key = generate_encryption_key()
        self.assertEqual(len(base64.b64decode(key)), 32)
        self.assertNotEqual(key, generate_encryption_key())

    def test_generated_key_encrypts_attributes(self):
        import encrypted_attributes

        class Vault:
            pass

        encrypted_attributes.declare(Vault, 'token', key=encrypted_attributes.generate_encryption_key())
        vault = Vault()
        vault.token = 'abc'

        self.assertEqual(vault.token, 'abc')
        self.assertIn('generate_encryption_key', encrypted_attributes.__all__)
        self.assertIn('validate_encryption_config', encrypted_attributes.__all__)


class AppConfigTests(SimpleTestCase):

    def test_app_is_installed(self):
        from django.apps import apps

        config = apps.get_app_config('encrypted_attributes')
        self.assertEqual(config.verbose_name, 'Encrypted Attributes')

    @override_settings(ENCRYPTED_ATTRIBUTES_KDF_ITERATIONS='many')
    def test_ready_validates_settings(self):
        from django.apps import apps

        with self.assertRaises(EncryptionConfigurationError):
            apps.get_app_config('encrypted_attributes').ready()
