"""Prefixed identifiers for persisted records."""

import uuid

DOCUMENT_PREFIX = "doc_"
CHUNK_PREFIX = "chk_"
JOB_PREFIX = "job_"
SESSION_PREFIX = "ses_"
MESSAGE_PREFIX = "msg_"


def generate_id(prefix: str) -> str:
    """Return ``prefix`` followed by 32 random hex characters."""
    return f"{prefix}{uuid.uuid4().hex}"


def document_id() -> str:
    return generate_id(DOCUMENT_PREFIX)


def job_id() -> str:
    return generate_id(JOB_PREFIX)


def session_id() -> str:
    return generate_id(SESSION_PREFIX)


def message_id() -> str:
    return generate_id(MESSAGE_PREFIX)


def chunk_id(document_id: str, chunk_index: int) -> str:
    """Deterministic chunk id, so a re-run of ingestion overwrites instead of duplicating."""
    name = f"{document_id}:{chunk_index}"
    return f"{CHUNK_PREFIX}{uuid.uuid5(uuid.NAMESPACE_URL, name).hex}"
