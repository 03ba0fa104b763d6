"""Hard validation errors raised by the Cohort Demand Engine."""


class ShareValidationError(ValueError):
    """A rate, share map or population figure cannot be used safely."""

    def __init__(self, context: str, errors: list[str]) -> None:
        self.context = context
        self.errors = errors
        message = f"Validation failed for {context}:\n" + "\n".join(
            f"  - {error}" for error in errors
        )
        super().__init__(message)


class AllocationError(ValueError):
    """Population cannot be split across regimens unambiguously."""


class DosingError(ValueError):
    """A dose schema cannot be converted into an annual dose."""
