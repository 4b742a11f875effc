"""Error kinds raised by spotgraph engines.

Parameter and structural errors are fatal. Feature- and domain-level
degeneracies are raised per unit, caught by the owning engine, logged, and
counted in the returned tables.
"""

from __future__ import annotations


class SpotgraphError(Exception):
    """Base class for spotgraph errors."""


class InvalidParameterError(SpotgraphError, ValueError):
    """A tunable parameter is out of range (k, resolution, feature subset, ...)."""


class EmptyGraphError(SpotgraphError, ValueError):
    """A required neighbor graph has no edges."""


class DegenerateFeatureError(SpotgraphError, ValueError):
    """A feature has zero variance; its statistic is undefined."""

    def __init__(self, feature: str, message: str | None = None):
        self.feature = str(feature)
        super().__init__(message or f"Feature '{self.feature}' has zero variance.")


class InsufficientObservationsError(SpotgraphError, ValueError):
    """A domain has fewer observations than the ranking minimum."""

    def __init__(self, domain: int, n_obs: int, minimum: int):
        self.domain = int(domain)
        self.n_obs = int(n_obs)
        self.minimum = int(minimum)
        super().__init__(
            f"Domain {self.domain} has {self.n_obs} observations; "
            f"at least {self.minimum} are required for ranking."
        )
