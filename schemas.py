"""Queue message schemas.

Every payload carries a ``kind`` tag so a worker can tell a message meant for
another queue from a well-formed one before acting on it.
"""
from typing import Annotated, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, TypeAdapter


class EnrichmentJob(BaseModel):
    kind: Literal["enrichment"] = "enrichment"
    record_id: int
    text: str
    stars: int


class LogJob(BaseModel):
    kind: Literal["log"] = "log"
    message: str = Field(min_length=1)


class ToneSentiment(BaseModel):
    tone: str
    sentiment: str


class FailedJob(BaseModel):
    queue: str
    task_id: Optional[str] = None
    payload: Optional[dict] = None
    attempts: int
    error: str
    failed_at: str


Job = Annotated[Union[EnrichmentJob, LogJob], Field(discriminator="kind")]

_job_adapter = TypeAdapter(Job)

J = TypeVar("J", EnrichmentJob, LogJob)


def parse_job(payload, expected: Type[J]) -> J:
    """Validate a dequeued payload against the job type a worker handles.

    Raises pydantic.ValidationError for malformed payloads and TypeError when
    the payload is valid but of another kind.
    """
    job = _job_adapter.validate_python(payload)
    if not isinstance(job, expected):
        raise TypeError(f"Expected {expected.__name__} payload, got kind={job.kind!r}")
    return job
