"""Run configuration from flags and environment variables.

Every setting can come from a ``SMALLSCOPE_*`` environment variable (a
``.env`` file in the working directory is loaded first) and is overridden
by an explicit command-line flag.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from dotenv import find_dotenv, load_dotenv

from .checker import SearchOptions
from .domain import Catalog, OverflowPolicy, Scope
from .errors import ConfigurationError
from .models import MODELS, build_model
from .result import Err, Ok, Result
from .system import TransitionSystem

ENV_PREFIX = "SMALLSCOPE_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class CheckConfig:
    """Everything one ``smallscope check`` run needs."""

    model: str = "auction"
    scope: Scope = Scope()
    invariants: tuple[str, ...] | None = None
    workers: int = 1
    max_steps: int | None = None
    timeout: float | None = None
    symmetry: bool = False
    strict_delegation: bool = False

    def validate(self) -> None:
        if self.model not in MODELS:
            raise ConfigurationError(
                f"Unknown model '{self.model}'. Available: {', '.join(sorted(MODELS))}"
            )
        self.scope.validate()
        if self.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {self.workers}")
        if self.max_steps is not None and self.max_steps < 1:
            raise ConfigurationError(f"max_steps must be positive, got {self.max_steps}")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout}")

    def build_system(self) -> TransitionSystem[Any]:
        self.validate()
        catalog = Catalog.from_scope(self.scope)
        return build_model(self.model, catalog, strict_delegation=self.strict_delegation)

    def search_options(self, cancel: threading.Event | None = None) -> SearchOptions:
        return SearchOptions(
            workers=self.workers,
            max_steps=self.max_steps,
            timeout=self.timeout,
            symmetry=self.symmetry,
            cancel=cancel,
        )

    def with_overrides(self, **overrides: Any) -> CheckConfig:
        """Apply the non-``None`` overrides; scope fields are accepted by name."""
        scope_fields = {
            k: v for k, v in overrides.items() if k in Scope.__dataclass_fields__ and v is not None
        }
        rest = {
            k: v
            for k, v in overrides.items()
            if k not in Scope.__dataclass_fields__ and v is not None
        }
        return replace(self, scope=replace(self.scope, **scope_fields), **rest)

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None
    ) -> Result[CheckConfig, ConfigurationError]:
        """Read ``SMALLSCOPE_*`` variables, loading ``.env`` first."""
        if environ is None:
            load_dotenv(find_dotenv(usecwd=True))
            environ = os.environ
        try:
            config = cls._parse_env(environ)
            config.validate()
        except ConfigurationError as e:
            return Err(e)
        return Ok(config)

    @classmethod
    def _parse_env(cls, environ: Mapping[str, str]) -> CheckConfig:
        def get(name: str) -> str | None:
            raw = environ.get(ENV_PREFIX + name)
            return raw.strip() if raw is not None else None

        base = cls()
        invariants = get("INVARIANTS")
        return base.with_overrides(
            model=get("MODEL") or None,
            address_count=_int(get("ADDRESSES"), "ADDRESSES"),
            proposal_count=_int(get("PROPOSALS"), "PROPOSALS"),
            int_min=_int(get("INT_MIN"), "INT_MIN"),
            int_max=_int(get("INT_MAX"), "INT_MAX"),
            max_trace_length=_int(get("MAX_TRACE_LENGTH"), "MAX_TRACE_LENGTH"),
            overflow=_overflow(get("OVERFLOW")),
            invariants=tuple(n.strip() for n in invariants.split(",") if n.strip())
            if invariants
            else None,
            workers=_int(get("WORKERS"), "WORKERS"),
            max_steps=_int(get("MAX_STEPS"), "MAX_STEPS"),
            timeout=_float(get("TIMEOUT"), "TIMEOUT"),
            symmetry=_bool(get("SYMMETRY"), "SYMMETRY"),
            strict_delegation=_bool(get("STRICT_DELEGATION"), "STRICT_DELEGATION"),
        )


def _int(raw: str | None, name: str) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from None


def _float(raw: str | None, name: str) -> float | None:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be a number, got {raw!r}") from None


def _bool(raw: str | None, name: str) -> bool | None:
    if raw is None:
        return None
    match raw.lower():
        case value if value in _TRUE:
            return True
        case value if value in _FALSE:
            return False
        case _:
            raise ConfigurationError(f"{ENV_PREFIX}{name} must be a boolean, got {raw!r}")


def _overflow(raw: str | None) -> OverflowPolicy | None:
    if raw is None or raw == "":
        return None
    try:
        return OverflowPolicy(raw.lower())
    except ValueError:
        choices = ", ".join(p.value for p in OverflowPolicy)
        raise ConfigurationError(
            f"{ENV_PREFIX}OVERFLOW must be one of {choices}, got {raw!r}"
        ) from None
