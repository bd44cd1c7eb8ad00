# src/ptdiag/errors.py
"""
Exception types shared by every diagnostic stage.

All of them derive from ValueError: they describe inputs (data or config)
that cannot produce a defined metric, never internal bugs.
"""

from __future__ import annotations

from typing import Iterable


class PtdiagError(ValueError):
    """Base class for ptdiag input errors."""


class PreconditionError(PtdiagError):
    """Inputs are inconsistent or too small for the requested computation."""


class NumericalDegeneracyError(PtdiagError):
    """A metric is mathematically undefined for the supplied data."""


class ConfigurationError(PtdiagError):
    """A configuration value is out of range or unrecognized."""


# ---------- validators ----------

def require_positive_int(name: str, value) -> int:
    if isinstance(value, bool) or int(value) != value or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer; got {value!r}")
    return int(value)


def require_positive(name: str, value) -> float:
    value = float(value)
    if not value > 0:
        raise ConfigurationError(f"{name} must be > 0; got {value!r}")
    return value


def require_fraction(name: str, value) -> float:
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must lie in [0, 1]; got {value!r}")
    return value


def require_choice(name: str, value, choices: Iterable[str]) -> str:
    choices = tuple(choices)
    if value not in choices:
        raise ConfigurationError(
            f"{name} must be one of {choices}; got {value!r}"
        )
    return value
