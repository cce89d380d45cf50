"""
Descriptor resolution.

Keys and predicates may be given as a literal value, as a reference to a
method of the owning instance, or as a callable taking the instance:

    key='static secret'              # Literal
    key=MethodRef('load_key')        # instance.load_key()
    key=lambda user: user.tenant_key # CallableRef

``resolve`` turns the merged options of an attribute into a
``ResolvedOptions`` snapshot for a single accessor call. Nothing is memoized:
key material may depend on instance state.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from .backends import get_cipher_provider
from .exceptions import ResolutionError


@dataclass(frozen=True)
class Literal:
    """A value used as-is."""
    value: Any


@dataclass(frozen=True)
class MethodRef:
    """Name of a zero-argument method called on the owning instance."""
    name: str


@dataclass(frozen=True)
class CallableRef:
    """Callable invoked with the owning instance as its only argument."""
    fn: Callable[[Any], Any]


def as_resolvable(value: Any):
    """Coerce a plain option value into one of the three variants."""
    if isinstance(value, (Literal, MethodRef, CallableRef)):
        return value
    if callable(value):
        return CallableRef(value)
    return Literal(value)


def is_instance_independent(value: Any) -> bool:
    """True when ``value`` resolves without an instance."""
    return isinstance(as_resolvable(value), Literal)


def resolve_value(instance: Any, value: Any) -> Any:
    """
    Resolve a key or predicate value against ``instance``.

    ``instance`` is None when resolving for a class-level helper.

    Raises:
        ResolutionError: If a method reference cannot be called on the
            instance, or an instance is required but missing
    """
    ref = as_resolvable(value)

    if isinstance(ref, Literal):
        return ref.value

    if instance is None:
        raise ResolutionError(f"{ref!r} requires an instance to resolve")

    if isinstance(ref, MethodRef):
        method = getattr(instance, ref.name, None)
        if method is None or not callable(method):
            raise ResolutionError(
                f"{type(instance).__name__} does not expose a method '{ref.name}'"
            )
        return method()

    return ref.fn(instance)


@dataclass(frozen=True)
class ResolvedOptions:
    """Fully merged and resolved options for one accessor call."""
    key: Any
    secret_key_param_name: str
    algorithm: Optional[str]
    encode: Optional[str]
    marshal: bool
    marshaler: Any
    dump_method: str
    load_method: str
    allow_empty_value: bool
    binary: bool
    provider: Any
    encrypt_method: str
    decrypt_method: str
    extra_options: Mapping[str, Any] = field(default_factory=dict)

    @property
    def cipher_params(self) -> Dict[str, Any]:
        """Parameters forwarded verbatim to the cipher provider."""
        params = {
            self.secret_key_param_name: self.key,
            'algorithm': self.algorithm,
        }
        params.update(self.extra_options)
        return params


def encoding_of(options: Mapping[str, Any]) -> Optional[str]:
    """The encode format an option set asks for, or None when encoding is off."""
    encode = options.get('encode')
    if not encode:
        return None
    if isinstance(encode, str):
        return encode
    return options.get('encode_format') or 'base64'


def resolve(instance: Any, spec, provider: Any = None) -> ResolvedOptions:
    """
    Build the ``ResolvedOptions`` for one call on ``spec``.

    Args:
        instance: The owning instance, or None for class-level helpers
        spec: The ``AttributeSpec`` being accessed
        provider: Provider selected at declaration time; looked up from the
            ``cipher_provider`` option when omitted

    Raises:
        ResolutionError: If the key cannot be resolved
    """
    options = spec.options

    if provider is None:
        provider = get_cipher_provider(options.get('cipher_provider'))

    return ResolvedOptions(
        key=resolve_value(instance, options.get('key')),
        secret_key_param_name=resolve_value(instance, options.get('secret_key_param_name') or 'key'),
        algorithm=options.get('algorithm'),
        encode=encoding_of(options),
        marshal=bool(options.get('marshal')),
        marshaler=options.get('marshaler'),
        dump_method=options.get('dump_method') or 'dumps',
        load_method=options.get('load_method') or 'loads',
        allow_empty_value=bool(options.get('allow_empty_value')),
        binary=bool(options.get('binary')),
        provider=provider,
        encrypt_method=options.get('encrypt_method') or 'encrypt',
        decrypt_method=options.get('decrypt_method') or 'decrypt',
        extra_options=options.extra_options,
    )
