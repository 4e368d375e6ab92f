"""
Unit tests for EtagComponent and EtagSupport.
"""

import hashlib
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from fastapi import Request, Response

from service_bridge.app.auth.models import UserSession, StudyParticipant
from service_bridge.app.etag.component import (
    EtagComponent, EtagSupport, canonical_timestamp, ETAG
)
from service_bridge.app.etag.models import EtagCacheKey, EtagContext
from shared.errors import AuthenticationError, EntityNotFoundError, InvalidArgumentError

T1 = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
T2 = datetime(2024, 2, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))


def md5_hex(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


class TestEtagComponent:
    """Test cases for EtagComponent."""

    @pytest.fixture
    def session(self):
        """Signed-in session."""
        return UserSession(
            session_token="token-1",
            id="user1",
            app_id="api",
            participant=StudyParticipant(id="user1", org_membership="orgA")
        )

    @pytest.fixture
    def timestamps(self):
        """Etag timestamps keyed by cache key string."""
        return {
            "api:App:Etag": T1,
            "api:study1:Study:Etag": T2,
        }

    @pytest.fixture
    def cache_provider(self, session, timestamps):
        """Mock cache provider."""
        provider = AsyncMock()
        provider.get_user_session = AsyncMock(return_value=session)

        async def get_etag(cache_key):
            return timestamps.get(str(cache_key))

        provider.get_etag = AsyncMock(side_effect=get_etag)
        return provider

    @pytest.fixture
    def metrics(self):
        return DummyMetrics()

    @pytest.fixture
    def component(self, cache_provider, metrics):
        """Create EtagComponent instance."""
        return EtagComponent(cache_provider, metrics=metrics)

    @pytest.fixture
    def context(self):
        """Two cache keys, the second depending on a route argument."""
        return EtagContext(
            arg_values={"studyId": "study1"},
            cache_keys=[
                EtagCacheKey("App", ["appId"]),
                EtagCacheKey("Study", ["appId", "studyId"]),
            ]
        )

    def make_request(self, headers):
        request = MagicMock(spec=Request)
        request.headers = headers
        return request

    @pytest.mark.asyncio
    async def test_calculate_etag_digests_timestamps_in_order(self, component, context, session):
        """Etag is the hex MD5 of the space-joined UTC timestamps."""
        etag = await component.calculate_etag(context, session)

        expected = md5_hex("2024-01-01T00:00:00.000000Z 2024-02-01T12:30:15.250000Z")
        assert etag == expected
        assert len(etag) == 32
        assert etag == etag.lower()

    @pytest.mark.asyncio
    async def test_calculate_etag_is_deterministic(self, component, context, session):
        first = await component.calculate_etag(context, session)
        second = await component.calculate_etag(context, session)

        assert first == second

    @pytest.mark.asyncio
    async def test_calculate_etag_changes_with_any_timestamp(self, component, context, session, timestamps):
        before = await component.calculate_etag(context, session)

        timestamps["api:study1:Study:Etag"] = T2 + timedelta(milliseconds=1)
        after_second = await component.calculate_etag(context, session)

        timestamps["api:App:Etag"] = T1 + timedelta(microseconds=1)
        after_first = await component.calculate_etag(context, session)

        assert len({before, after_second, after_first}) == 3

    @pytest.mark.asyncio
    async def test_calculate_etag_depends_on_declaration_order(self, component, session):
        forward = EtagContext(
            arg_values={"studyId": "study1"},
            cache_keys=[EtagCacheKey("App", ["appId"]), EtagCacheKey("Study", ["appId", "studyId"])]
        )
        reverse = EtagContext(
            arg_values={"studyId": "study1"},
            cache_keys=[EtagCacheKey("Study", ["appId", "studyId"]), EtagCacheKey("App", ["appId"])]
        )

        assert await component.calculate_etag(forward, session) != await component.calculate_etag(reverse, session)

    @pytest.mark.asyncio
    async def test_calculate_etag_normalizes_to_utc(self, component, context, session, timestamps):
        utc_etag = await component.calculate_etag(context, session)

        eastern = timezone(timedelta(hours=-5))
        timestamps["api:study1:Study:Etag"] = T2.astimezone(eastern)

        assert await component.calculate_etag(context, session) == utc_etag

    @pytest.mark.asyncio
    async def test_calculate_etag_any_miss_returns_none(self, component, context, session, timestamps, metrics):
        del timestamps["api:study1:Study:Etag"]

        assert await component.calculate_etag(context, session) is None
        assert ("etag_cache_misses_total", {"model": "Study"}) in metrics.counters

    @pytest.mark.asyncio
    async def test_calculate_etag_stops_at_first_miss(self, component, context, session, timestamps, cache_provider):
        del timestamps["api:App:Etag"]

        assert await component.calculate_etag(context, session) is None
        cache_provider.get_etag.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_argument_values_take_precedence_over_session(self, component, session, cache_provider):
        context = EtagContext(
            arg_values={"appId": "other-app"},
            cache_keys=[EtagCacheKey("App", ["appId"])]
        )

        await component.calculate_etag(context, session)

        cache_key = cache_provider.get_etag.await_args.args[0]
        assert str(cache_key) == "other-app:App:Etag"

    @pytest.mark.asyncio
    async def test_session_fallbacks(self, component, session, cache_provider):
        context = EtagContext(
            cache_keys=[EtagCacheKey("Enrollment", ["appId", "userId", "orgId"])]
        )

        await component.calculate_etag(context, session)

        cache_key = cache_provider.get_etag.await_args.args[0]
        assert str(cache_key) == "api:user1:orgA:Enrollment:Etag"

    @pytest.mark.asyncio
    async def test_unknown_key_name_raises(self, component, session, cache_provider):
        context = EtagContext(cache_keys=[EtagCacheKey("Study", ["appId", "studyId"])])

        with pytest.raises(InvalidArgumentError) as exc_info:
            await component.calculate_etag(context, session)

        assert exc_info.value.message == "EtagSupport: no value for key: studyId"
        cache_provider.get_etag.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_none_argument_value_raises(self, component, session):
        context = EtagContext(
            arg_values={"studyId": None},
            cache_keys=[EtagCacheKey("Study", ["appId", "studyId"])]
        )

        with pytest.raises(InvalidArgumentError):
            await component.calculate_etag(context, session)

    @pytest.mark.asyncio
    async def test_missing_session_field_raises(self, component):
        session = UserSession(session_token="token-2", id="user2", app_id="api")
        context = EtagContext(cache_keys=[EtagCacheKey("Organization", ["orgId"])])

        with pytest.raises(InvalidArgumentError):
            await component.calculate_etag(context, session)

    @pytest.mark.asyncio
    async def test_check_etag_requires_session(self, component, context, cache_provider):
        cache_provider.get_user_session = AsyncMock(return_value=None)
        proceed = AsyncMock()
        request = self.make_request({"Bridge-Session": "expired"})

        with pytest.raises(AuthenticationError):
            await component.check_etag(request, Response(), context, proceed)

        cache_provider.get_user_session.assert_awaited_once_with("expired")
        cache_provider.get_etag.assert_not_awaited()
        proceed.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_check_etag_rejects_unauthenticated_session(self, component, context, cache_provider, session):
        cache_provider.get_user_session = AsyncMock(
            return_value=session.model_copy(update={"authenticated": False})
        )

        with pytest.raises(AuthenticationError):
            await component.check_etag(
                self.make_request({"Bridge-Session": "token-1"}), Response(), context, AsyncMock()
            )

    @pytest.mark.asyncio
    async def test_check_etag_matching_etag_short_circuits(self, component, context, session, metrics):
        etag = await component.calculate_etag(context, session)
        proceed = AsyncMock()
        request = self.make_request({"Bridge-Session": "token-1", "If-None-Match": etag})

        result = await component.check_etag(request, Response(), context, proceed)

        assert isinstance(result, Response)
        assert result.status_code == 304
        assert result.headers[ETAG] == etag
        proceed.assert_not_awaited()
        assert ("etag_checks_total", {"outcome": "not_modified"}) in metrics.counters

    @pytest.mark.asyncio
    async def test_check_etag_stale_etag_proceeds_and_attaches_etag(self, component, context, session, metrics):
        etag = await component.calculate_etag(context, session)
        proceed = AsyncMock(return_value={"identifier": "study1"})
        request = self.make_request({"Bridge-Session": "token-1", "If-None-Match": "stale"})
        response = Response()

        result = await component.check_etag(request, response, context, proceed)

        assert result == {"identifier": "study1"}
        proceed.assert_awaited_once_with(session)
        assert response.headers[ETAG] == etag
        assert ("etag_checks_total", {"outcome": "proceed"}) in metrics.counters

    @pytest.mark.asyncio
    async def test_check_etag_without_request_etag_proceeds(self, component, context):
        proceed = AsyncMock(return_value="body")
        response = Response()

        result = await component.check_etag(
            self.make_request({"Bridge-Session": "token-1"}), response, context, proceed
        )

        assert result == "body"
        proceed.assert_awaited_once()
        assert ETAG in response.headers

    @pytest.mark.asyncio
    async def test_check_etag_cache_miss_always_proceeds(self, component, context, timestamps, metrics):
        del timestamps["api:App:Etag"]
        proceed = AsyncMock(return_value="body")
        response = Response()
        empty_etag = md5_hex("")
        request = self.make_request({"Bridge-Session": "token-1", "If-None-Match": empty_etag})

        result = await component.check_etag(request, response, context, proceed)

        assert result == "body"
        proceed.assert_awaited_once()
        assert ETAG not in response.headers
        assert ("etag_checks_total", {"outcome": "no_etag"}) in metrics.counters

    @pytest.mark.asyncio
    async def test_check_etag_sets_header_on_returned_response(self, component, context):
        returned = Response(content="{}", media_type="application/json")
        proceed = AsyncMock(return_value=returned)

        result = await component.check_etag(
            self.make_request({"Bridge-Session": "token-1"}), Response(), context, proceed
        )

        assert result is returned
        assert ETAG in returned.headers

    @pytest.mark.asyncio
    async def test_check_etag_records_outcome_when_handler_fails(self, component, context, metrics):
        proceed = AsyncMock(side_effect=EntityNotFoundError("Study"))
        response = Response()

        with pytest.raises(EntityNotFoundError):
            await component.check_etag(
                self.make_request({"Bridge-Session": "token-1"}), response, context, proceed
            )

        proceed.assert_awaited_once()
        assert ("etag_checks_total", {"outcome": "proceed"}) in metrics.counters
        assert ETAG not in response.headers

    @pytest.mark.asyncio
    async def test_two_models_resolved_in_order(self, component, session, timestamps):
        """Model A keyed by appId, Model B keyed by appId and studyId."""
        timestamps["api:ModelA:Etag"] = T1
        timestamps["api:study1:ModelB:Etag"] = T2
        context = EtagContext(
            arg_values={"studyId": "study1"},
            cache_keys=[
                EtagCacheKey("ModelA", ["appId"]),
                EtagCacheKey("ModelB", ["appId", "studyId"]),
            ]
        )

        etag = await component.calculate_etag(context, session)
        assert etag == md5_hex(f"{canonical_timestamp(T1)} {canonical_timestamp(T2)}")

        del timestamps["api:study1:ModelB:Etag"]
        assert await component.calculate_etag(context, session) is None


class TestEtagSupport:
    """Test cases for the EtagSupport route wrapper."""

    def test_requires_cache_keys(self):
        with pytest.raises(ValueError):
            EtagSupport(MagicMock(), [], AsyncMock())

    @pytest.mark.asyncio
    async def test_builds_context_and_calls_handler_with_arguments(self):
        session = UserSession(session_token="token-1", id="user1", app_id="api")
        component = MagicMock()

        async def check_etag(request, response, context, proceed):
            return await proceed(session)

        component.check_etag = AsyncMock(side_effect=check_etag)
        handler = AsyncMock(return_value="study")
        cache_keys = [EtagCacheKey("Study", ["appId", "studyId"])]
        support = EtagSupport(component, cache_keys, handler)

        result = await support(MagicMock(spec=Request), Response(), studyId="study1")

        assert result == "study"
        handler.assert_awaited_once_with(session, studyId="study1")
        context = component.check_etag.await_args.args[2]
        assert context.arg_values == {"studyId": "study1"}
        assert context.cache_keys == cache_keys


def test_canonical_timestamp_treats_naive_as_utc():
    naive = datetime(2024, 3, 4, 5, 6, 7, 8000)
    assert canonical_timestamp(naive) == "2024-03-04T05:06:07.008000Z"
    assert canonical_timestamp(naive.replace(tzinfo=timezone.utc)) == canonical_timestamp(naive)


def test_etag_cache_key_stores_keys_as_tuple():
    key = EtagCacheKey("Study", ["appId", "studyId"])
    assert key.keys == ("appId", "studyId")
    assert key == EtagCacheKey("Study", ("appId", "studyId"))
