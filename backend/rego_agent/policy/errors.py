"""
Request-level errors raised before any provider call is made.
"""


class PolicyRequestError(Exception):
    """Base for errors answered with 400."""

    code = "INVALID_INPUT"
    status_code = 400


class InvalidInputError(PolicyRequestError):
    """Missing, empty or wrong-typed request field."""


class UnsupportedOperationError(PolicyRequestError):
    """Operation has no prompt template."""

    code = "UNSUPPORTED_OPERATION"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Unsupported operation: '{operation}'")
