"""
Study and schedule storage for Bridge Service.

Documents live in the shared cache next to their etag timestamps. Every
write stamps the entity's etag entry and every delete removes it, so
etag-supported reads of these entities stay correct.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from shared.errors import EntityNotFoundError
from shared.logging import get_logger
from ..cache.cache_key import CacheKey
from ..cache.cache_provider import CacheProvider
from .models import (
    Study, StudyRequest, Schedule, ScheduleRequest, Timeline,
    STUDY_MODEL, SCHEDULE_MODEL
)


class StudyService:
    """Reads and writes studies and schedules."""

    def __init__(self, cache_provider: CacheProvider):
        self.cache_provider = cache_provider
        self.logger = get_logger("bridge.studies")

    async def get_study(self, app_id: str, study_id: str) -> Study:
        data = await self.cache_provider.get_object(CacheKey.study(app_id, study_id))
        if data is None:
            raise EntityNotFoundError("Study", {"studyId": study_id})
        return Study.model_validate(data)

    async def save_study(self, app_id: str, study_id: str, request: StudyRequest) -> Study:
        """Create or update a study and stamp its etag."""
        existing = await self._find_study(app_id, study_id)
        study = Study(
            identifier=study_id,
            app_id=app_id,
            name=request.name,
            details=request.details,
            phase=request.phase,
            version=existing.version + 1 if existing else 1,
            modified_on=_next_modified_on(existing.modified_on if existing else None)
        )

        await self.cache_provider.set_object(
            CacheKey.study(app_id, study_id), study.model_dump(mode="json")
        )
        await self.cache_provider.set_etag(
            CacheKey.etag(STUDY_MODEL, app_id, study_id), study.modified_on
        )

        self.logger.info("Study saved", study_id=study_id, version=study.version)
        return study

    async def delete_study(self, app_id: str, study_id: str) -> None:
        """Delete a study and its schedule, removing both etags."""
        await self.get_study(app_id, study_id)

        await self.cache_provider.remove_object(CacheKey.study(app_id, study_id))
        await self.cache_provider.remove_etag(CacheKey.etag(STUDY_MODEL, app_id, study_id))
        await self.cache_provider.remove_object(CacheKey.schedule(app_id, study_id))
        await self.cache_provider.remove_etag(CacheKey.etag(SCHEDULE_MODEL, app_id, study_id))

        self.logger.info("Study deleted", study_id=study_id)

    async def get_schedule(self, app_id: str, study_id: str) -> Schedule:
        data = await self.cache_provider.get_object(CacheKey.schedule(app_id, study_id))
        if data is None:
            raise EntityNotFoundError("Schedule", {"studyId": study_id})
        return Schedule.model_validate(data)

    async def save_schedule(self, app_id: str, study_id: str, request: ScheduleRequest) -> Schedule:
        """Create or update the schedule of an existing study and stamp its etag."""
        await self.get_study(app_id, study_id)

        existing = await self._find_schedule(app_id, study_id)
        schedule = Schedule(
            study_id=study_id,
            app_id=app_id,
            name=request.name,
            duration=request.duration,
            sessions=request.sessions,
            version=existing.version + 1 if existing else 1,
            modified_on=_next_modified_on(existing.modified_on if existing else None)
        )

        await self.cache_provider.set_object(
            CacheKey.schedule(app_id, study_id), schedule.model_dump(mode="json")
        )
        await self.cache_provider.set_etag(
            CacheKey.etag(SCHEDULE_MODEL, app_id, study_id), schedule.modified_on
        )

        self.logger.info("Schedule saved", study_id=study_id, version=schedule.version)
        return schedule

    async def get_timeline(self, app_id: str, study_id: str) -> Timeline:
        study = await self.get_study(app_id, study_id)
        schedule = await self.get_schedule(app_id, study_id)
        return Timeline(
            study_id=study.identifier,
            study_name=study.name,
            phase=study.phase,
            duration=schedule.duration,
            sessions=schedule.sessions
        )

    async def _find_study(self, app_id: str, study_id: str) -> Optional[Study]:
        data = await self.cache_provider.get_object(CacheKey.study(app_id, study_id))
        return Study.model_validate(data) if data is not None else None

    async def _find_schedule(self, app_id: str, study_id: str) -> Optional[Schedule]:
        data = await self.cache_provider.get_object(CacheKey.schedule(app_id, study_id))
        return Schedule.model_validate(data) if data is not None else None


def _next_modified_on(previous: Optional[datetime]) -> datetime:
    """Current UTC time, kept strictly after the previous write so etags always change."""
    now = datetime.now(timezone.utc)
    if previous is not None and now <= previous:
        return previous + timedelta(microseconds=1)
    return now
