"""Exception hierarchy for the scheduling core.

Validation errors describe bad client input and are safe to show to the
caller.  Storage errors wrap driver failures; read paths replace them with
:class:`StatusUnavailable` so storage details never leak to clients.
"""


class CallmeError(Exception):
    """Base class for all scheduling errors."""


# -- Validation ----------------------------------------------------------------


class TaskValidationError(CallmeError):
    """Client-supplied task data is invalid. Never retried."""


class InvalidTimeSpec(TaskValidationError):
    pass


class IncompleteTask(TaskValidationError):
    pass


class UnsupportedMethod(TaskValidationError):
    pass


class InvalidTag(TaskValidationError):
    pass


class InvalidCallbackURL(TaskValidationError):
    pass


class NegativeField(TaskValidationError):
    pass


class InvalidTaskId(TaskValidationError):
    """A wire-format task identity could not be parsed."""


# -- Storage & lookup ----------------------------------------------------------


class StorageError(CallmeError):
    """The task store failed to read or write."""


class StatusUnavailable(StorageError):
    def __init__(self, msg: str = "failed to retrieve status") -> None:
        super().__init__(msg)


class LookupFailed(CallmeError):
    """The initial fetch for a reschedule failed."""


class TaskNotFound(CallmeError):
    pass
