"""Error taxonomy for world generation."""


class PlanetGenError(Exception):
    """Base class for all generation errors."""


class ConfigurationError(PlanetGenError, ValueError):
    """Invalid world bounds or generation parameters."""


class DegenerateInputError(PlanetGenError):
    """Triangulation is impossible (too few points or all collinear)."""


class InvalidStateError(PlanetGenError):
    """A query was issued before generation reached the Completed state."""


class DomainError(PlanetGenError):
    """A point-location query fell outside the sampled region."""


class ConvergenceNotReached(UserWarning):
    """Erosion hit its iteration cap before the convergence threshold.

    Issued as a warning: the pipeline still completes and heights keep
    their last computed values.
    """
