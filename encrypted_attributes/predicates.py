"""
Evaluation of ``if``/``unless`` gates.
"""

from typing import Any, Mapping

from .resolvers import is_instance_independent, resolve_value


def evaluate(instance: Any, predicate: Any, default: bool) -> bool:
    """
    Resolve ``predicate`` against ``instance``.

    A missing predicate (None) evaluates to ``default``.
    """
    if predicate is None:
        return default
    return bool(resolve_value(instance, predicate))


def is_allowed(instance: Any, options: Mapping[str, Any]) -> bool:
    """
    Whether the transform pipeline runs for this call.

    An absent ``if`` counts as true and an absent ``unless`` as false.
    """
    if not evaluate(instance, options.get('if'), True):
        return False
    return not evaluate(instance, options.get('unless'), False)


def is_unconditional(options: Mapping[str, Any]) -> bool:
    """True when both gates can be evaluated without an instance."""
    return all(
        options.get(name) is None or is_instance_independent(options.get(name))
        for name in ('if', 'unless')
    )
