class WorkflowError(ValueError):
    """Base class for every domain error raised by the services."""


class ValidationError(WorkflowError):
    """Malformed input: bad coordinates, empty signer list, unknown user, bad image."""


class AuthorizationError(WorkflowError):
    """The caller may not perform the action (not a signer, not their turn, not an admin)."""


class StateError(WorkflowError):
    """The AFE or signer slot is in a status that forbids the transition."""


class NotFoundError(WorkflowError):
    pass


class StorageError(WorkflowError):
    pass


class RenderError(WorkflowError):
    """The PDF could not be parsed or annotated as a whole."""
