"""Exceptions raised by hybrid factors and their adapters."""


class PreconditionError(RuntimeError):
    """A factor was evaluated with inputs it cannot be evaluated on."""


class MissingKeyError(PreconditionError):
    """A continuous or discrete key the factor touches has no value."""

    def __init__(self, kind: str, keys):
        self.kind = kind
        self.keys = list(keys)
        super().__init__(f"Missing {kind} value(s) for key(s) {self.keys}")


class InvalidAssignmentError(PreconditionError):
    """A discrete assignment lies outside its variable's cardinality."""


class NotInitializedError(PreconditionError):
    """An adapter was evaluated before its foreign keys were cached."""
