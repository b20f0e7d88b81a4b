"""
pkgstage.executors
==================

Unified import surface + tiny registry.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

from pkgstage.executors.base import OperationExecutor, is_excluded

_REGISTRY: dict[str, str] = {
    "local": "pkgstage.executors.local:LocalExecutor",
}


def resolve_executor(name: str, **kwargs: Any) -> OperationExecutor:
    """
    Instantiate an executor by registry name.

    Example:
        executor = resolve_executor("local", composer_bin="/usr/local/bin/composer")
    """
    try:
        target = _REGISTRY[name]
    except KeyError as e:
        raise KeyError(f"Unknown executor '{name}'. Known: {sorted(_REGISTRY)}") from e
    mod_name, cls_name = target.split(":")
    cls = getattr(import_module(mod_name), cls_name)
    return cls(**kwargs)  # type: ignore[no-any-return]


def register_executor(name: str, target: str) -> None:
    """Register ``"module:Class"`` under `name` (e.g. a host-provided executor)."""
    if ":" not in target:
        raise ValueError(f"Executor target must look like 'module:Class', got {target!r}")
    _REGISTRY[name] = target


__all__ = ["OperationExecutor", "is_excluded", "resolve_executor", "register_executor"]
