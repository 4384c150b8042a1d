from __future__ import annotations

from typing import Any, Callable, Dict, List, Type

from .base import Tool

_CLASS_REGISTRY: Dict[str, Type[Tool]] = {}


def register(*slugs: str) -> Callable[[Type[Tool]], Type[Tool]]:
    def decorator(cls: Type[Tool]) -> Type[Tool]:
        for slug in slugs:
            _CLASS_REGISTRY[slug] = cls
        return cls
    return decorator


def get_tool_class(slug: str) -> Type[Tool] | None:
    return _CLASS_REGISTRY.get(slug)


def create_tool(slug: str, settings: Dict[str, Any] | None = None) -> Tool:
    cls = _CLASS_REGISTRY.get(slug)
    if cls is None:
        raise KeyError(f"Unknown tool: {slug}")
    return cls(slug, settings)


def list_tools() -> List[str]:
    return sorted(_CLASS_REGISTRY.keys())


def list_tool_specs() -> List[Dict[str, Any]]:
    specs: List[Dict[str, Any]] = []
    for slug, cls in sorted(_CLASS_REGISTRY.items(), key=lambda kv: kv[0]):
        specs.append({
            "slug": slug,
            "summary": cls.summary,
            "field": "files" if cls.multiple else "file",
            "min_files": cls.min_files,
            "settings_schema": cls.settings_schema(),
        })
    return specs
