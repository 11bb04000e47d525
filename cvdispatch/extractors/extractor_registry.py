"""
Named extraction strategies.

build_cascade resolves ExtractionSettings.strategies through this registry,
so a deployment can slot its own strategy into the order by name. The CLI
prints the registered names with --list-extractors.
"""

from __future__ import annotations

from typing import Dict, List, Optional, Type

from .base import ApplicantExtractor

_STRATEGIES: Dict[str, Type[ApplicantExtractor]] = {}


def register_extractor(name: str, extractor_class: Type[ApplicantExtractor]) -> None:
    """Make extractor_class available under name; registering a name again replaces it."""
    _STRATEGIES[name] = extractor_class


def unregister_extractor(name: str) -> None:
    _STRATEGIES.pop(name, None)


def get_extractor(name: str, **collaborators) -> Optional[ApplicantExtractor]:
    """
    Instantiate the strategy registered under name.

    Args:
        name: Registered strategy name, e.g. "heuristic"
        **collaborators: Constructor arguments (verifier, client, runner, cache, ...)

    Returns:
        The strategy, or None if nothing is registered under name
    """
    strategy_class = _STRATEGIES.get(name)
    if strategy_class is None:
        return None
    return strategy_class(**collaborators)


def list_extractors() -> List[Dict[str, str]]:
    """Registered strategies sorted by name, with the first line of each class docstring."""
    listed = []
    for name in sorted(_STRATEGIES):
        doc = (_STRATEGIES[name].__doc__ or "").strip()
        listed.append({"name": name, "description": doc.splitlines()[0] if doc else "No description available"})
    return listed


__all__ = [
    "register_extractor",
    "unregister_extractor",
    "get_extractor",
    "list_extractors",
]
