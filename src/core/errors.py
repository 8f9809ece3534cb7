"""Exceptions shared across the distribution pipeline."""


class PreconditionError(ValueError):
    """The candidate cannot be distributed (missing id or positions)."""


class DeliveryError(RuntimeError):
    """A delivery channel failed to hand a notification to its transport."""
