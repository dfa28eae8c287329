"""Error kinds shared by the API, the repository and the queue workers."""


class ReviewServiceError(Exception):
    """Base class for errors raised by this service."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ReviewServiceError):
    """Bad user input, reported as 400."""

    status_code = 400


class InvalidPagination(ValidationError):
    pass


class NotFoundError(ReviewServiceError):
    status_code = 404


class ConflictError(ReviewServiceError):
    status_code = 409


class DependencyError(ReviewServiceError):
    """Storage or broker unreachable. Never retried inline by request handlers."""

    status_code = 500


class ClassificationError(ReviewServiceError):
    """Provider call or response parsing failed. Absorbed by the classifier."""


class JobExhaustedError(ReviewServiceError):
    """A queued job used up its attempts and was moved to the failed set."""

    def __init__(self, queue: str, task_id: str, attempts: int, reason: str):
        super().__init__(
            f"Job {task_id} on '{queue}' failed after {attempts} attempts: {reason}"
        )
        self.queue = queue
        self.task_id = task_id
        self.attempts = attempts
        self.reason = reason
        # args mirrors the constructor so pickle and Celery rebuild this type
        self.args = (queue, task_id, attempts, reason)

    def __str__(self):
        return self.message
