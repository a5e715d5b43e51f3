"""Exceptions raised by the servoloop control pipeline."""


class ConfigurationError(ValueError):
    """A required startup parameter is missing or malformed."""


class TransformLookupError(TimeoutError):
    """A transform could not be resolved within the lookup timeout."""

    def __init__(self, parent_frame: str, child_frame: str, timeout: float, reason: str = ""):
        self.parent_frame = parent_frame
        self.child_frame = child_frame
        self.timeout = timeout
        msg = f"Could not resolve '{parent_frame}' -> '{child_frame}' within {timeout:.3f}s"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
