"""
Bridge service: study resources served with etag support.
"""

from typing import Optional

from fastapi import Request, Response

from shared.base_service import BaseService
from .auth.models import UserSession
from .auth.session import SessionAuthenticator
from .cache.cache_provider import CacheProvider
from .etag.component import EtagComponent, EtagSupport
from .etag.models import EtagCacheKey
from .studies.models import (
    Study, StudyRequest, Schedule, ScheduleRequest, Timeline,
    STUDY_MODEL, SCHEDULE_MODEL
)
from .studies.service import StudyService


class BridgeService(BaseService):
    """Bridge service implementation."""

    def __init__(self, cache_provider: Optional[CacheProvider] = None):
        super().__init__("bridge", 8020)

        self.cache = cache_provider or CacheProvider(
            self.config.redis_url,
            socket_timeout=self.config.redis_socket_timeout,
            session_ttl=self.config.session_ttl_seconds
        )
        self.authenticator = SessionAuthenticator(self.cache, self.config.session_header)
        self.etag = EtagComponent(self.cache, self.config.session_header, metrics=self.metrics)
        self.studies = StudyService(self.cache)

        self._setup_bridge_routes()

    def _setup_bridge_routes(self):
        """Set up bridge-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "bridge",
                "message": "Bridge - Study Service",
                "version": "1.0.0",
                "capabilities": ["etag", "studies", "schedules"]
            }

        async def read_study(session: UserSession, studyId: str) -> Study:
            return await self.studies.get_study(session.app_id, studyId)

        async def read_timeline(session: UserSession, studyId: str) -> Timeline:
            return await self.studies.get_timeline(session.app_id, studyId)

        get_study_with_etag = EtagSupport(
            self.etag,
            [EtagCacheKey(STUDY_MODEL, ["appId", "studyId"])],
            read_study
        )
        get_timeline_with_etag = EtagSupport(
            self.etag,
            [
                EtagCacheKey(STUDY_MODEL, ["appId", "studyId"]),
                EtagCacheKey(SCHEDULE_MODEL, ["appId", "studyId"]),
            ],
            read_timeline
        )

        @self.app.get("/v5/studies/{study_id}", response_model=Study)
        async def get_study(study_id: str, request: Request, response: Response):
            """Get a study; answers 304 when the caller's etag is current."""
            return await get_study_with_etag(request, response, studyId=study_id)

        @self.app.post("/v5/studies/{study_id}", response_model=Study)
        async def save_study(study_id: str, body: StudyRequest, request: Request):
            """Create or update a study."""
            session = await self.authenticator.authenticate_request(request)
            return await self.studies.save_study(session.app_id, study_id, body)

        @self.app.delete("/v5/studies/{study_id}")
        async def delete_study(study_id: str, request: Request):
            """Delete a study and its schedule."""
            session = await self.authenticator.authenticate_request(request)
            await self.studies.delete_study(session.app_id, study_id)
            return {"message": "Study deleted."}

        @self.app.post("/v5/studies/{study_id}/schedule", response_model=Schedule)
        async def save_schedule(study_id: str, body: ScheduleRequest, request: Request):
            """Create or update a study's schedule."""
            session = await self.authenticator.authenticate_request(request)
            return await self.studies.save_schedule(session.app_id, study_id, body)

        @self.app.get("/v5/studies/{study_id}/timeline", response_model=Timeline)
        async def get_timeline(study_id: str, request: Request, response: Response):
            """Get the timeline for a study; answers 304 when the caller's etag is current."""
            return await get_timeline_with_etag(request, response, studyId=study_id)

    async def _check_dependencies(self):
        """Check bridge service dependencies."""
        dependencies = {}

        try:
            if await self.cache.health_check():
                dependencies["redis"] = "ok"
            else:
                dependencies["redis"] = "error"
        except Exception:
            dependencies["redis"] = "error"

        return dependencies

    async def start(self):
        """Start bridge service components."""
        await self.cache.start()
        self.logger.info("Bridge service started")

    async def stop(self):
        """Stop bridge service components."""
        await self.cache.stop()
        self.logger.info("Bridge service stopped")


def create_app(cache_provider: Optional[CacheProvider] = None):
    """Create bridge service application."""
    service = BridgeService(cache_provider)
    return service.app


if __name__ == "__main__":
    service = BridgeService()
    service.run()
