"""Cartesian products of load settings.

Used to run the same scenario under every combination of independent
setting axes, e.g. both transports times both operations::

    config_product(base, transport=list(TransportKind), operation=list(Operation))
"""

import itertools
from enum import Enum
from typing import Any, List, Sequence

from .config import Settings


def config_product(base: Settings, **axes: Sequence[Any]) -> List[Settings]:
    """Return one copy of ``base`` per combination of axis values.

    Axes are applied in keyword order; the last axis varies fastest.
    """
    unknown = [name for name in axes if name not in Settings.model_fields]
    if unknown:
        raise ValueError(f"Unknown setting axes: {', '.join(unknown)}")
    names = list(axes)
    return [
        base.model_copy(update=dict(zip(names, values)))
        for values in itertools.product(*(axes[name] for name in names))
    ]


def config_id(settings: Settings, axes: Sequence[str]) -> str:
    """Readable id such as ``transport=bulk-operation=insert``."""
    parts = []
    for name in axes:
        value = getattr(settings, name)
        parts.append(f"{name}={value.value if isinstance(value, Enum) else value}")
    return "-".join(parts)
