"""
Option registry for encrypted attributes.

Options are kept in three layers merged by precedence:

    per-attribute > class default > global default

The global layer is the built-in defaults overridden by the
``ENCRYPTED_ATTRIBUTES_DEFAULTS`` setting. Class layers and attribute specs
are stored in an ``OptionRegistry`` owned by each class; subclasses see the
layers and attributes of their bases through the MRO.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Tuple

from .exceptions import DeclarationError, ResolutionError
from .utils import get_setting

logger = logging.getLogger(__name__)

REGISTRY_ATTR = '_encrypted_attribute_registry'

OPTION_KEYS = frozenset([
    'key',
    'secret_key_param_name',
    'attribute',
    'prefix',
    'suffix',
    'if',
    'unless',
    'cipher_provider',
    'encrypt_method',
    'decrypt_method',
    'algorithm',
    'encode',
    'encode_format',
    'marshal',
    'marshaler',
    'dump_method',
    'load_method',
    'allow_empty_value',
    'binary',
    'extra_options',
])

# Python-friendly spellings of option keys
OPTION_ALIASES = {
    'if_': 'if',
    'storage_attribute': 'attribute',
}

DEFAULT_OPTIONS = {
    'prefix': 'encrypted_',
    'suffix': '',
    'secret_key_param_name': 'key',
    'cipher_provider': 'aes',
    'encrypt_method': 'encrypt',
    'decrypt_method': 'decrypt',
    'algorithm': 'aes-256-cbc',
    'encode': False,
    'encode_format': 'base64',
    'marshal': False,
    'marshaler': None,
    'dump_method': 'dumps',
    'load_method': 'loads',
    'allow_empty_value': False,
    'binary': False,
}


def normalize_options(options: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Map aliases onto option keys and collect unknown keys as extra options.
    """
    normalized: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}

    for name, value in (options or {}).items():
        name = OPTION_ALIASES.get(name, name)
        if name == 'extra_options':
            extra.update(value or {})
        elif name in OPTION_KEYS:
            normalized[name] = value
        else:
            extra[name] = value

    if extra:
        normalized['extra_options'] = extra
    return normalized


class OptionLayer(Mapping):
    """
    Immutable mapping of options for one precedence level.
    """

    def __init__(self, options: Optional[Mapping[str, Any]] = None):
        self._options = dict(options or {})

    def __getitem__(self, name):
        return self._options[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._options)

    def __len__(self) -> int:
        return len(self._options)

    def __repr__(self):
        return f"<OptionLayer {self._options!r}>"

    def merge(self, other: Mapping[str, Any]) -> 'OptionLayer':
        """
        Return a new layer with ``other`` taking precedence over this one.

        Extra options are merged key by key rather than replaced.
        """
        merged = dict(self._options)
        for name, value in other.items():
            if name == 'extra_options':
                extra = dict(merged.get('extra_options') or {})
                extra.update(value or {})
                merged[name] = extra
            else:
                merged[name] = value
        return OptionLayer(merged)

    @property
    def extra_options(self) -> Dict[str, Any]:
        return dict(self._options.get('extra_options') or {})


@dataclass(frozen=True)
class AttributeSpec:
    """A declared encrypted attribute."""
    name: str
    storage_name: str
    layers: Tuple[OptionLayer, OptionLayer, OptionLayer]
    options: OptionLayer


def global_layer() -> OptionLayer:
    """
    Built-in defaults overridden by ``ENCRYPTED_ATTRIBUTES_DEFAULTS``.
    """
    overrides = get_setting('ENCRYPTED_ATTRIBUTES_DEFAULTS', {}) or {}
    return OptionLayer(DEFAULT_OPTIONS).merge(normalize_options(overrides))


def storage_name_for(name: str, options: Mapping[str, Any]) -> str:
    """Derive the storage attribute name from prefix/name/suffix or an override."""
    if options.get('attribute'):
        return str(options['attribute'])
    return f"{options.get('prefix') or ''}{name}{options.get('suffix') or ''}"


class OptionRegistry:
    """
    Class default layer and attribute specs declared directly on one class.
    """

    def __init__(self, owner: type):
        self.owner = owner
        self.class_layer = OptionLayer()
        self.specs: Dict[str, AttributeSpec] = {}

    def set_default(self, options: Mapping[str, Any]) -> None:
        self.class_layer = self.class_layer.merge(normalize_options(options))

    def __contains__(self, name) -> bool:
        return name in self.specs

    def __repr__(self):
        return f"<OptionRegistry {self.owner.__name__}: {sorted(self.specs)}>"


def get_registry(cls: type, create: bool = False) -> Optional[OptionRegistry]:
    """Return the registry owned by ``cls`` itself (not inherited)."""
    registry = cls.__dict__.get(REGISTRY_ATTR)
    if registry is None and create:
        registry = OptionRegistry(cls)
        setattr(cls, REGISTRY_ATTR, registry)
    return registry


def _registries(cls: type) -> Iterator[OptionRegistry]:
    """Registries along the MRO, most generic first."""
    for klass in reversed(cls.__mro__):
        registry = klass.__dict__.get(REGISTRY_ATTR)
        if registry is not None:
            yield registry


def class_layer(cls: type) -> OptionLayer:
    """Effective class default layer, including inherited defaults."""
    layer = OptionLayer()
    for registry in _registries(cls):
        layer = layer.merge(registry.class_layer)
    return layer


def attribute_specs(cls: type) -> Dict[str, AttributeSpec]:
    """All attribute specs visible on ``cls``, including inherited ones."""
    specs: Dict[str, AttributeSpec] = {}
    for registry in _registries(cls):
        specs.update(registry.specs)
    return specs


def get_attribute_spec(cls: type, name: str) -> AttributeSpec:
    """
    Raises:
        ResolutionError: If ``name`` is not an encrypted attribute of ``cls``
    """
    spec = attribute_specs(cls).get(name)
    if spec is None:
        raise ResolutionError(f"{cls.__name__} has no encrypted attribute '{name}'")
    return spec


def set_default(scope: type, **options) -> None:
    """
    Merge options into the class default layer of ``scope``.

    Only attributes declared afterwards pick the new defaults up. Global
    defaults are configured through ``ENCRYPTED_ATTRIBUTES_DEFAULTS``.

    Raises:
        DeclarationError: If ``scope`` is not a class
    """
    if not isinstance(scope, type):
        raise DeclarationError(
            "Default options can only be set on a class; "
            "use ENCRYPTED_ATTRIBUTES_DEFAULTS for global defaults"
        )
    get_registry(scope, create=True).set_default(options)
    logger.debug(f"Updated encrypted attribute defaults for {scope.__name__}: {sorted(options)}")


def build_attribute_spec(
    cls: type,
    name: str,
    options: Mapping[str, Any],
    pending: Iterable[AttributeSpec] = (),
) -> AttributeSpec:
    """
    Build the spec for an encrypted attribute without registering it.

    The global and class layers are snapshotted into the spec, so later
    default changes do not affect attributes already declared. ``pending``
    holds specs declared in the same call, which are checked for collisions
    like registered ones.

    Raises:
        DeclarationError: On invalid names or storage name collisions
    """
    if not isinstance(name, str) or not name.isidentifier():
        raise DeclarationError(f"Invalid attribute name: {name!r}")

    layers = (global_layer(), class_layer(cls), OptionLayer(normalize_options(options)))
    merged = layers[0].merge(layers[1]).merge(layers[2])
    storage_name = storage_name_for(name, merged)

    if not storage_name.isidentifier():
        raise DeclarationError(f"Invalid storage attribute name: {storage_name!r}")

    others = attribute_specs(cls)
    others.update((spec.name, spec) for spec in pending)
    others.pop(name, None)

    if storage_name in others or storage_name == name:
        raise DeclarationError(
            f"Storage attribute '{storage_name}' of {cls.__name__}.{name} "
            f"collides with an encrypted attribute name"
        )
    for other in others.values():
        if other.storage_name == storage_name:
            raise DeclarationError(
                f"Storage attribute '{storage_name}' is already used by "
                f"{cls.__name__}.{other.name}"
            )
        if other.storage_name == name:
            raise DeclarationError(
                f"Attribute name '{name}' is the storage attribute of "
                f"{cls.__name__}.{other.name}"
            )

    return AttributeSpec(name=name, storage_name=storage_name, layers=layers, options=merged)


def register_attribute_spec(cls: type, spec: AttributeSpec) -> None:
    """Store ``spec`` on ``cls``, replacing an earlier spec of the same name."""
    get_registry(cls, create=True).specs[spec.name] = spec


def declare_attribute(cls: type, name: str, options: Mapping[str, Any]) -> AttributeSpec:
    """Build and register an encrypted attribute spec on ``cls``."""
    spec = build_attribute_spec(cls, name, options)
    register_attribute_spec(cls, spec)
    return spec


def effective_layers(cls: type, name: str) -> Tuple[OptionLayer, OptionLayer, OptionLayer]:
    """The (global, class, attribute) layers ``name`` was declared with."""
    return get_attribute_spec(cls, name).layers
