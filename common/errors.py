"""Exception taxonomy shared by the pipeline services."""


class PipelineError(Exception):
    """Base class for every error raised by the pipeline."""


class RecordNotFound(PipelineError):
    """A video, scene or outbox row could not be loaded."""


class PreconditionFailed(PipelineError):
    """A stage was invoked before the state it depends on was persisted."""


class StageFailed(PipelineError):
    """An external generator or blob store call failed."""


class PipelineHalted(PipelineError):
    """The video is already failed; nothing downstream may run."""


class InvalidTransition(PipelineError):
    """A status write that the state machine does not allow."""


class StaleTransition(InvalidTransition):
    """A conditional status update matched no row (another writer got there first)."""


class InvalidPayload(PipelineError):
    """A task body that does not validate against its contract."""


class EnqueueError(PipelineError):
    """Publishing a task to the queue failed."""


# Errors that retrying the same task can never fix.
NON_RETRYABLE_ERRORS = (PipelineHalted, InvalidPayload)
