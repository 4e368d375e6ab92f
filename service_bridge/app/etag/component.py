"""
Etag support for session-authenticated routes.

An etag is calculated from the UTC modifiedOn timestamps of every entity a
route declares through ``EtagCacheKey`` entries. Each entry describes how to
produce a ``CacheKey`` by substituting key values (appId, studyId, userId...)
into the key. If there is no timestamp under any one of those keys, it is a
cache miss and there is no etag for the whole response.

This means that anywhere an entity described by an ``EtagCacheKey`` is
created, updated, or deleted, its ``CacheKey.etag`` entry must be set,
updated, or removed.
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

from fastapi import Request, Response

from shared.errors import AuthenticationError, InvalidArgumentError
from shared.logging import get_logger, set_user_context
from shared.metrics import MetricsCollector
from ..auth.models import UserSession
from ..cache.cache_key import CacheKey
from ..cache.cache_provider import CacheProvider
from .models import EtagCacheKey, EtagContext, EtagOutcome

IF_NONE_MATCH = "If-None-Match"
ETAG = "ETag"
NO_VALUE_ERROR = "EtagSupport: no value for key: "

APP_ID_FIELD = "appId"
USER_ID_FIELD = "userId"
ORG_ID_FIELD = "orgId"

Proceed = Callable[[UserSession], Awaitable[Any]]


class EtagComponent:
    """Computes etags and answers conditional requests with 304."""

    def __init__(
        self,
        cache_provider: CacheProvider,
        session_header: str = "Bridge-Session",
        metrics: Optional[MetricsCollector] = None,
    ):
        self.cache_provider = cache_provider
        self.session_header = session_header
        self.metrics = metrics
        self.logger = get_logger("bridge.etag")

    async def check_etag(
        self,
        request: Request,
        response: Response,
        context: EtagContext,
        proceed: Proceed,
    ) -> Any:
        """
        Run ``proceed`` unless the caller already holds a fresh copy.

        The caller must be signed in, since this runs before the route's own
        security checks. When the request's If-None-Match equals the current
        etag a 304 response is returned and ``proceed`` is never awaited.
        Otherwise ``proceed`` runs once and the etag, if any, is added to the
        response.
        """
        request_etag = request.headers.get(IF_NONE_MATCH)
        session_token = request.headers.get(self.session_header)

        session = await self.cache_provider.get_user_session(session_token)
        if session is None or not session.authenticated:
            raise AuthenticationError()
        set_user_context(user_id=session.id, app_id=session.app_id)

        # None until every dependent entity has cached its timestamp, or after
        # one of them is deleted.
        etag = await self.calculate_etag(context, session)

        if request_etag is not None and request_etag == etag:
            self.logger.debug("Returning 304 for etag", etag=etag)
            self._record_outcome(EtagOutcome.NOT_MODIFIED)
            return Response(status_code=304, headers={ETAG: etag})

        # Counted before proceeding so handler failures are still recorded.
        self._record_outcome(EtagOutcome.PROCEED if etag is not None else EtagOutcome.NO_ETAG)

        result = await proceed(session)
        if etag is not None:
            if isinstance(result, Response):
                result.headers[ETAG] = etag
            else:
                response.headers[ETAG] = etag
            self.logger.debug("Returning etag to response", etag=etag)
        return result

    async def calculate_etag(self, context: EtagContext, session: UserSession) -> Optional[str]:
        """Hex MD5 of the declared entities' timestamps, or None on any miss."""
        timestamps = []
        for timestamp_key in context.cache_keys:
            resolved_key_values = [
                self._get_value(context, session, field_name)
                for field_name in timestamp_key.keys
            ]
            cache_key = CacheKey.etag(timestamp_key.model, *resolved_key_values)
            timestamp = await self.cache_provider.get_etag(cache_key)
            if timestamp is None:
                self.logger.debug("Etag cache miss", model=timestamp_key.model, cache_key=str(cache_key))
                if self.metrics:
                    self.metrics.increment_counter("etag_cache_misses_total", model=timestamp_key.model)
                return None
            timestamps.append(timestamp)

        base = " ".join(canonical_timestamp(timestamp) for timestamp in timestamps)
        return hashlib.md5(base.encode("utf-8")).hexdigest()

    def _get_value(self, context: EtagContext, session: UserSession, field_name: str) -> str:
        """Resolve a key name from the call's arguments, then from the session."""
        if field_name in context.arg_values:
            value = context.arg_values[field_name]
            if value is None:
                raise InvalidArgumentError(NO_VALUE_ERROR + field_name)
            return str(value)

        value = None
        if field_name == APP_ID_FIELD:
            value = session.app_id
        elif field_name == USER_ID_FIELD:
            value = session.id
        elif field_name == ORG_ID_FIELD:
            value = session.participant.org_membership

        if value is None:
            raise InvalidArgumentError(NO_VALUE_ERROR + field_name)
        return value

    def _record_outcome(self, outcome: EtagOutcome):
        if self.metrics:
            self.metrics.increment_counter("etag_checks_total", outcome=outcome.value)


class EtagSupport:
    """
    Wraps a route handler with etag checking.

    Compose at route registration::

        get_study = EtagSupport(component, [EtagCacheKey("Study", ["appId", "studyId"])], handler)

        @app.get("/v5/studies/{studyId}")
        async def route(studyId: str, request: Request, response: Response):
            return await get_study(request, response, studyId=studyId)

    ``handler`` is awaited as ``handler(session, **arg_values)``.
    """

    def __init__(
        self,
        component: EtagComponent,
        cache_keys: Iterable[EtagCacheKey],
        handler: Callable[..., Awaitable[Any]],
    ):
        self.component = component
        self.cache_keys = list(cache_keys)
        self.handler = handler
        if not self.cache_keys:
            raise ValueError("EtagSupport requires at least one EtagCacheKey")

    async def __call__(self, request: Request, response: Response, **arg_values: Any) -> Any:
        context = EtagContext(arg_values=dict(arg_values), cache_keys=self.cache_keys)

        async def proceed(session: UserSession) -> Any:
            return await self.handler(session, **arg_values)

        return await self.component.check_etag(request, response, context, proceed)


def canonical_timestamp(value: datetime) -> str:
    """UTC ISO 8601 with microseconds and a Z suffix. Naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc).replace(tzinfo=None)
    return utc.isoformat(timespec="microseconds") + "Z"
