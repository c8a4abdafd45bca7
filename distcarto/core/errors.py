"""Error types raised by the cartogram core."""


class CartogramError(ValueError):
    """Base class for all input-validation and numerical failures."""


class InsufficientPoints(CartogramError):
    """Fewer points than the operation needs."""


class DimensionMismatch(CartogramError):
    """Array shapes or lengths that do not line up."""


class DegenerateConfiguration(CartogramError):
    """Collinear or coincident points, singular systems."""


class NonPositiveDuration(CartogramError):
    """Negative or non-finite durations, or a non-zero matrix diagonal."""


class NumericalInstability(CartogramError):
    """Ill-conditioned fit or a negative eigenvalue beyond tolerance."""


class OutOfDomain(CartogramError):
    """Non-finite coordinates."""
