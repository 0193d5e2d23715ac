"""Exceptions raised while building, parsing or printing task graphs."""


class TaskGraphError(Exception):
    """Base class for all taskgraph errors."""


class InvalidGraphError(TaskGraphError):
    """The graph breaks a structural invariant and cannot be printed.

    ``invariant`` is a short tag naming what was violated, e.g.
    ``missing-start`` or ``unknown-node``.
    """

    def __init__(self, message, invariant=None):
        self.invariant = invariant
        super().__init__(f"Invalid workflow graph: {message}")


class SplitConvergenceError(InvalidGraphError):
    """The branches of a split never come back together."""

    def __init__(self, message="Unable to find end of split"):
        super().__init__(message, invariant="split-convergence")


class DSLParseError(TaskGraphError):
    """A task definition could not be parsed."""

    def __init__(self, definition, position, message):
        self.definition = definition
        self.position = position
        self.message = message
        super().__init__(message)

    def __str__(self):
        return f"{self.message} at position {self.position}\n{self.definition}\n{' ' * self.position}^"
