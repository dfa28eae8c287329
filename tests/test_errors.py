"""Tests for the error hierarchy."""
import pickle

from errors import JobExhaustedError, ReviewServiceError


def test_job_exhausted_error_survives_pickling():
    error = JobExhaustedError("enrichment", "task-7", 3, "storage down")

    rebuilt = pickle.loads(pickle.dumps(error))

    assert type(rebuilt) is JobExhaustedError
    assert (rebuilt.queue, rebuilt.task_id, rebuilt.attempts, rebuilt.reason) == \
        ("enrichment", "task-7", 3, "storage down")
    assert str(rebuilt) == "Job task-7 on 'enrichment' failed after 3 attempts: storage down"


def test_job_exhausted_error_can_be_rebuilt_from_args():
    error = JobExhaustedError("auditlog", "task-1", 3, "db down")

    rebuilt = JobExhaustedError(*error.args)

    assert rebuilt.message == error.message
    assert isinstance(rebuilt, ReviewServiceError)
