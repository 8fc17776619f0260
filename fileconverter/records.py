# fileconverter/records.py
# Job record store on top of the SQLModel Job table

import logging
from typing import Any, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from .errors import NotFound
from .models import STARTABLE, Job, JobStatus, utcnow

logger = logging.getLogger(__name__)


class JobRecordStore:
    """
    Every operation opens its own short session, so the store can be shared between
    request handlers and background worker threads.

    Writes are single UPDATE statements (last writer wins). The transition into
    `converting` is a conditional UPDATE and is the only gate against dispatching
    the same job twice.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def create(self, **fields: Any) -> Job:
        job = Job(**fields)
        with Session(self.engine) as session:
            session.add(job)
            session.commit()
            session.refresh(job)
        return job

    def get(self, job_id: str) -> Job:
        with Session(self.engine) as session:
            job = session.get(Job, job_id)
        if job is None:
            raise NotFound(job_id)
        return job

    def update(self, job_id: str, **patch: Any) -> Job:
        patch.setdefault("updated_at", utcnow())
        with Session(self.engine) as session:
            result = session.exec(update(Job).where(col(Job.id) == job_id).values(**patch))
            session.commit()
            if result.rowcount == 0:
                raise NotFound(job_id)
            return session.get(Job, job_id)

    def list(self, limit: int, category: Optional[str] = None, most_recent_first: bool = True) -> List[Job]:
        stmt = select(Job)
        if category:
            stmt = stmt.where(Job.category == category)
        order = col(Job.created_at).desc() if most_recent_first else col(Job.created_at).asc()
        stmt = stmt.order_by(order).limit(limit)
        with Session(self.engine) as session:
            return list(session.exec(stmt).all())

    def begin_conversion(self, job_id: str) -> Tuple[Job, bool]:
        """
        Atomically move a pending or failed job into `converting` with progress 5.

        Returns the job as stored after the statement and whether this call performed
        the transition. A job that is already converting or completed is returned
        unchanged with `False`.
        """
        stmt = (
            update(Job)
            .where(col(Job.id) == job_id, col(Job.status).in_([s.value for s in STARTABLE]))
            .values(
                status=JobStatus.CONVERTING.value,
                progress=5,
                output_name=None,
                error=None,
                updated_at=utcnow(),
            )
        )
        with Session(self.engine) as session:
            result = session.exec(stmt)
            session.commit()
            job = session.get(Job, job_id)
        if job is None:
            raise NotFound(job_id)
        return job, result.rowcount == 1

    def advance_progress(self, job_id: str, progress: int) -> bool:
        """Raise progress of a converting job; lower values are ignored."""
        progress = max(0, min(int(progress), 100))
        stmt = (
            update(Job)
            .where(
                col(Job.id) == job_id,
                col(Job.status) == JobStatus.CONVERTING.value,
                col(Job.progress) < progress,
            )
            .values(progress=progress, updated_at=utcnow())
        )
        with Session(self.engine) as session:
            result = session.exec(stmt)
            session.commit()
        return result.rowcount == 1

    def fail_interrupted(self, reason: str = "interrupted") -> int:
        """
        Mark every `converting` job as failed. Only safe when no attempt can be in
        flight, i.e. before this process has dispatched anything.
        """
        stmt = (
            update(Job)
            .where(col(Job.status) == JobStatus.CONVERTING.value)
            .values(
                status=JobStatus.FAILED.value,
                progress=0,
                output_name=None,
                error=reason,
                updated_at=utcnow(),
            )
        )
        with Session(self.engine) as session:
            result = session.exec(stmt)
            session.commit()
        return result.rowcount
