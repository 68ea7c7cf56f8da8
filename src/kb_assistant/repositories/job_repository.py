"""Job repository backing the durable job queue."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from kb_assistant.database.models import Job
from kb_assistant.models.job import JobStatus
from kb_assistant.repositories.base import BaseRepository
from kb_assistant.utils.errors import DatabaseError

logger = logging.getLogger(__name__)


class JobRepository(BaseRepository[Job]):
    """Data access for background jobs."""

    def __init__(self, session: AsyncSession):
        super().__init__(Job, session)

    async def claim_next(self) -> Optional[Job]:
        """
        Claim the oldest pending job.

        The job is moved to ``running``, its attempt counter incremented and
        ``started_at`` stamped. Returns None when nothing is pending.
        """
        try:
            result = await self.session.execute(
                select(Job)
                .where(Job.status == JobStatus.PENDING.value)
                .order_by(Job.created_at, Job.id)
                .limit(1)
            )
            job = result.scalar_one_or_none()
            if job is None:
                return None

            claimed = await self.session.execute(
                update(Job)
                .where(Job.id == job.id, Job.status == JobStatus.PENDING.value)
                .values(
                    status=JobStatus.RUNNING.value,
                    attempts=Job.attempts + 1,
                    started_at=datetime.utcnow(),
                )
            )
            if not claimed.rowcount:
                return None
            await self.session.refresh(job)
            return job
        except SQLAlchemyError as e:
            logger.error(f"Error claiming next job: {e}")
            raise DatabaseError("Failed to claim job") from e

    async def mark_completed(self, job_id: str) -> None:
        await self._set(
            job_id,
            status=JobStatus.COMPLETED.value,
            completed_at=datetime.utcnow(),
        )

    async def mark_failed(self, job_id: str, error: str) -> None:
        await self._set(
            job_id,
            status=JobStatus.FAILED.value,
            error=error,
            completed_at=datetime.utcnow(),
        )

    async def mark_pending(self, job_id: str, error: str) -> None:
        await self._set(job_id, status=JobStatus.PENDING.value, error=error)

    async def list_by_status(self, status: JobStatus) -> List[Job]:
        try:
            result = await self.session.execute(
                select(Job).where(Job.status == status.value).order_by(Job.created_at)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing {status.value} jobs: {e}")
            raise DatabaseError("Failed to list jobs") from e

    async def _set(self, job_id: str, **values) -> None:
        try:
            await self.session.execute(update(Job).where(Job.id == job_id).values(**values))
        except SQLAlchemyError as e:
            logger.error(f"Error updating job {job_id}: {e}")
            raise DatabaseError("Failed to update job") from e
