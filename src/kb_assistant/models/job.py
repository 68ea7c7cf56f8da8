"""Job queue models."""

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field

EMBED_DOCUMENT_SCHEMA_VERSION = 1


class JobStatus(str, Enum):
    """Job lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    """Task types understood by the worker."""

    EMBED_DOCUMENT = "embed_document"


class EmbedDocumentPayload(BaseModel):
    """Payload of an ``embed_document`` job."""

    schema_version: int = Field(default=EMBED_DOCUMENT_SCHEMA_VERSION)
    document_id: str = Field(..., description="Document to ingest")
    file_path: str = Field(..., description="Path of the stored upload")
    original_filename: str = Field(..., description="Filename recorded as chunk source")
    mime_type: str = Field(default="text/plain", description="Declared MIME type")


@dataclass(frozen=True)
class JobContext:
    """Execution context handed to a job handler alongside its payload."""

    job_id: str
    job_type: str
    attempt: int
    max_attempts: int

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts
