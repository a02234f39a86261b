"""Registry of the contract models shipped with smallscope."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from ..domain import Catalog
from ..errors import ConfigurationError
from ..system import TransitionSystem
from . import auction, ballot

type ModelFactory = Callable[..., TransitionSystem[Any]]

MODELS: dict[str, ModelFactory] = {
    "auction": auction.build,
    "ballot": ballot.build,
}


def build_model(name: str, catalog: Catalog, **options: Any) -> TransitionSystem[Any]:
    """Instantiate a registered model over ``catalog``.

    Raises ``ConfigurationError`` for an unknown model name.
    """
    match MODELS.get(name):
        case None:
            raise ConfigurationError(
                f"Unknown model '{name}'. Available: {', '.join(sorted(MODELS))}"
            )
        case factory:
            return factory(catalog, **options)
