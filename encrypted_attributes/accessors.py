"""
Accessor synthesis for encrypted attributes.

Declaring an attribute builds an ``Accessor`` (getter/setter pair bound to
the attribute spec, the resolver, the predicate gates, the transform pipeline
and the cipher provider) once, and stores it in a per-class accessor table.
An ``EncryptedAttribute`` descriptor installed under the logical name
dispatches reads and writes to that table:

    class User:
        pass

    declare(User, 'ssn', key='k1', encode=True)

    user = User()
    user.ssn = '123-45-6789'   # stored encrypted in user.encrypted_ssn
    user.ssn                   # '123-45-6789'

When the key and gates of an attribute do not depend on the instance,
``encrypt_<name>`` and ``decrypt_<name>`` are also exposed on the class.
"""

import logging
from typing import Any, Dict, Tuple

from .backends import get_cipher_provider
from .exceptions import DeclarationError, ResolutionError
from .options import (
    AttributeSpec,
    attribute_specs,
    build_attribute_spec,
    get_attribute_spec,
    register_attribute_spec,
    set_default,
)
from .pipeline import decrypt_value, encrypt_value, validate_encoding
from .predicates import is_allowed, is_unconditional
from .resolvers import ResolvedOptions, encoding_of, is_instance_independent, resolve

logger = logging.getLogger(__name__)

ACCESSORS_ATTR = '_encrypted_attribute_accessors'
HELPER_MARKER = '_encrypted_attribute_helper'


class Accessor:
    """
    Getter/setter pair for one declared attribute.
    """

    def __init__(self, spec: AttributeSpec, provider: Any):
        self.spec = spec
        self.provider = provider
        options = spec.options
        self.class_helpers = (
            is_instance_independent(options.get('key'))
            and is_instance_independent(options.get('secret_key_param_name'))
            and is_unconditional(options)
        )

    def __repr__(self):
        return f"<Accessor {self.spec.name} -> {self.spec.storage_name}>"

    def resolve(self, instance: Any) -> ResolvedOptions:
        return resolve(instance, self.spec, self.provider)

    def encrypt(self, instance: Any, value: Any) -> Any:
        """Write path for ``value``; ``instance`` is None for class helpers."""
        options = self.resolve(instance)
        if not is_allowed(instance, self.spec.options):
            return value
        return encrypt_value(value, options)

    def decrypt(self, instance: Any, value: Any) -> Any:
        """Read path for a stored ``value``; ``instance`` is None for class helpers."""
        options = self.resolve(instance)
        if not is_allowed(instance, self.spec.options):
            return value
        return decrypt_value(value, options)

    def get(self, instance: Any) -> Any:
        stored = getattr(instance, self.spec.storage_name, None)
        return self.decrypt(instance, stored)

    def set(self, instance: Any, value: Any) -> Any:
        stored = self.encrypt(instance, value)
        setattr(instance, self.spec.storage_name, stored)
        return value


class EncryptedAttribute:
    """
    Data descriptor dispatching to the accessor table of the instance's class.
    """

    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return f"<EncryptedAttribute {self.name}>"

    def __get__(self, instance, owner=None):
        if instance is None:
            return self
        return find_accessor(type(instance), self.name).get(instance)

    def __set__(self, instance, value):
        find_accessor(type(instance), self.name).set(instance, value)


def find_accessor(cls: type, name: str) -> Accessor:
    """
    Raises:
        ResolutionError: If ``name`` is not an encrypted attribute of ``cls``
    """
    for klass in cls.__mro__:
        table = klass.__dict__.get(ACCESSORS_ATTR)
        if table and name in table:
            return table[name]
    raise ResolutionError(f"{cls.__name__} has no encrypted attribute '{name}'")


def _accessor_table(cls: type) -> Dict[str, Accessor]:
    table = cls.__dict__.get(ACCESSORS_ATTR)
    if table is None:
        table = {}
        setattr(cls, ACCESSORS_ATTR, table)
    return table


def _provider_for(cls: type, spec: AttributeSpec) -> Any:
    options = spec.options
    provider = get_cipher_provider(options.get('cipher_provider'))

    for option, default in (('encrypt_method', 'encrypt'), ('decrypt_method', 'decrypt')):
        method_name = options.get(option) or default
        if not callable(getattr(provider, method_name, None)):
            raise DeclarationError(
                f"Cipher provider {provider!r} for {cls.__name__}.{spec.name} "
                f"has no method '{method_name}'"
            )

    if getattr(provider, 'requires_key', False) and options.get('key') is None:
        raise DeclarationError(
            f"{cls.__name__}.{spec.name} needs a key for cipher provider {provider!r}"
        )

    validate_encoding(encoding_of(options))
    return provider


def _helper(accessor: Accessor, direction: str):
    if direction == 'encrypt':
        def helper(value):
            return accessor.encrypt(None, value)
    else:
        def helper(value):
            return accessor.decrypt(None, value)

    helper.__name__ = f"{direction}_{accessor.spec.name}"
    helper.__doc__ = f"{direction.capitalize()} a value for '{accessor.spec.name}' without an instance."
    setattr(helper, HELPER_MARKER, True)
    return staticmethod(helper)


def _unavailable_helper(cls: type, name: str, direction: str):
    def helper(value):
        raise ResolutionError(
            f"{cls.__name__}.{name} has an instance-dependent key or condition; "
            f"{direction} through an instance instead"
        )

    helper.__name__ = f"{direction}_{name}"
    setattr(helper, HELPER_MARKER, True)
    return staticmethod(helper)


def _install_helpers(cls: type, accessor: Accessor) -> None:
    for direction in ('encrypt', 'decrypt'):
        helper_name = f"{direction}_{accessor.spec.name}"
        existing = getattr(cls, helper_name, None)
        is_ours = existing is None or getattr(existing, HELPER_MARKER, False)

        if accessor.class_helpers:
            if not is_ours:
                raise DeclarationError(
                    f"{cls.__name__}.{helper_name} already exists and is not an encryption helper"
                )
            setattr(cls, helper_name, _helper(accessor, direction))
        elif existing is not None and is_ours:
            # Re-declared with an instance-dependent key or gate
            if helper_name in cls.__dict__:
                delattr(cls, helper_name)
            if getattr(cls, helper_name, None) is not None:
                # Shadow the helper inherited from a base class
                setattr(cls, helper_name, _unavailable_helper(cls, accessor.spec.name, direction))


def _check_helper_names(cls: type, spec: AttributeSpec) -> None:
    for direction in ('encrypt', 'decrypt'):
        existing = getattr(cls, f"{direction}_{spec.name}", None)
        if existing is not None and not getattr(existing, HELPER_MARKER, False):
            raise DeclarationError(
                f"{cls.__name__}.{direction}_{spec.name} already exists and is not an encryption helper"
            )


def declare(cls: type, *names: str, **options) -> Tuple[AttributeSpec, ...]:
    """
    Declare one or more encrypted attributes on ``cls``.

    Every name is validated before any of them is registered, so a failing
    declaration leaves the class unchanged.

    Returns:
        The declared attribute specs

    Raises:
        DeclarationError: If the declaration is invalid
    """
    if not isinstance(cls, type):
        raise DeclarationError(f"Encrypted attributes are declared on classes, not {cls!r}")
    if not names:
        raise DeclarationError("At least one attribute name is required")

    prepared = []
    for name in names:
        spec = build_attribute_spec(cls, name, options, pending=[s for s, _ in prepared])
        accessor = Accessor(spec, _provider_for(cls, spec))
        if accessor.class_helpers:
            _check_helper_names(cls, spec)
        prepared.append((spec, accessor))

    table = _accessor_table(cls)
    for spec, accessor in prepared:
        register_attribute_spec(cls, spec)
        table[spec.name] = accessor
        setattr(cls, spec.name, EncryptedAttribute(spec.name))
        _install_helpers(cls, accessor)
        logger.debug(
            f"Declared encrypted attribute {cls.__name__}.{spec.name} -> {spec.storage_name} "
            f"(class helpers: {accessor.class_helpers})"
        )

    return tuple(spec for spec, _ in prepared)


def encrypted(*names: str, **options):
    """
    Class decorator form of ``declare``.

        @encrypted('ssn', key='k1', encode=True)
        class User:
            ...
    """
    def decorator(cls):
        declare(cls, *names, **options)
        return cls
    return decorator


def encrypted_attributes(cls: type) -> Dict[str, str]:
    """Mapping of logical attribute name to storage attribute name."""
    return {name: spec.storage_name for name, spec in attribute_specs(cls).items()}


def is_attr_encrypted(cls: type, name: str) -> bool:
    return name in attribute_specs(cls)


def attribute_spec(cls: type, name: str) -> AttributeSpec:
    return get_attribute_spec(cls, name)


def _target_accessor(target: Any, name: str) -> Tuple[Any, Accessor]:
    if isinstance(target, type):
        accessor = find_accessor(target, name)
        if not accessor.class_helpers:
            raise ResolutionError(
                f"{target.__name__}.{name} has an instance-dependent key or condition; "
                f"encrypt through an instance instead"
            )
        return None, accessor
    return target, find_accessor(type(target), name)


def encrypt_attribute(target: Any, name: str, value: Any) -> Any:
    """
    Encrypt ``value`` as attribute ``name`` would store it.

    ``target`` is either an instance, whose state is used to resolve the key
    and gates, or a class, in which case the attribute must be eligible for
    class helpers.

    Raises:
        ResolutionError: If ``target`` is a class and the attribute needs an instance
    """
    instance, accessor = _target_accessor(target, name)
    return accessor.encrypt(instance, value)


def decrypt_attribute(target: Any, name: str, value: Any) -> Any:
    """Inverse of ``encrypt_attribute``."""
    instance, accessor = _target_accessor(target, name)
    return accessor.decrypt(instance, value)


def translate_lookup(cls: type, **lookups) -> Dict[str, Any]:
    """
    Rewrite ``{name: value}`` lookups into ``{storage_name: stored value}``.

    Keys that are not encrypted attributes pass through unchanged. Intended
    for persistence adapters building equality queries against encrypted
    storage, which only works for deterministic providers.

    Raises:
        ResolutionError: If an encrypted attribute needs an instance to encrypt
    """
    specs = attribute_specs(cls)
    translated: Dict[str, Any] = {}
    for name, value in lookups.items():
        if name in specs:
            translated[specs[name].storage_name] = encrypt_attribute(cls, name, value)
        else:
            translated[name] = value
    return translated


class EncryptedAttributesMixin:
    """
    Mixin exposing the declaration surface as class methods.

        class User(EncryptedAttributesMixin):
            pass

        User.attr_encrypted_options(encode=True)
        User.attr_encrypted('email', 'phone', key=MethodRef('tenant_key'))
    """

    @classmethod
    def attr_encrypted(cls, *names, **options):
        return declare(cls, *names, **options)

    @classmethod
    def attr_encrypted_options(cls, **options):
        set_default(cls, **options)

    @classmethod
    def encrypted_attributes(cls) -> Dict[str, str]:
        return encrypted_attributes(cls)

    @classmethod
    def is_attr_encrypted(cls, name: str) -> bool:
        return is_attr_encrypted(cls, name)
