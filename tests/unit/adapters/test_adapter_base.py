"""Tests for behaviour shared by every driver."""

import asyncio

import pytest
from aiohttp import ClientConnectionError

from streamhub.domain.exceptions import AdapterError, ConfigurationError, ConnectionError
from streamhub.domain.models import ListOptions, Stream, StreamStatus
from streamhub.infrastructure.adapters.base import BaseStreamAdapter, paginate


class TestRequestJson:
    """HTTP plumbing."""

    @pytest.mark.asyncio
    async def test_decodes_json(self, http_session):
        http_session.queue(200, '{"ok": true}')
        adapter = BaseStreamAdapter(session=http_session)

        data = await adapter._request_json(
            "POST", "http://api/x", payload={"a": 1}, headers={"X-Test": "1"}
        )

        assert data == {"ok": True}
        method, url, kwargs = http_session.requests[0]
        assert (method, url) == ("POST", "http://api/x")
        assert kwargs["json"] == {"a": 1}
        assert kwargs["headers"] == {"X-Test": "1"}

    @pytest.mark.asyncio
    async def test_empty_body(self, http_session):
        http_session.queue(204, "")
        adapter = BaseStreamAdapter(session=http_session)
        assert await adapter._request_json("DELETE", "http://api/x") == {}

    @pytest.mark.asyncio
    async def test_http_error(self, http_session):
        http_session.queue(500, "internal error")
        adapter = BaseStreamAdapter(session=http_session)

        with pytest.raises(AdapterError, match="500"):
            await adapter._request_json("GET", "http://api/x")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error", [ClientConnectionError("refused"), asyncio.TimeoutError()]
    )
    async def test_transport_errors(self, http_session, error):
        http_session.fail(error)
        adapter = BaseStreamAdapter(session=http_session)

        with pytest.raises(ConnectionError):
            await adapter._request_json("GET", "http://api/x")

    @pytest.mark.asyncio
    async def test_invalid_json(self, http_session):
        http_session.queue(200, "<html>")
        adapter = BaseStreamAdapter(session=http_session)

        with pytest.raises(AdapterError, match="invalid JSON"):
            await adapter._request_json("GET", "http://api/x")

    @pytest.mark.asyncio
    async def test_borrowed_session_is_not_closed(self, http_session):
        adapter = BaseStreamAdapter(session=http_session)
        await adapter.disconnect()
        assert not http_session.closed


class TestConfig:
    """Configuration validation."""

    def test_invalid_config(self):
        with pytest.raises(ConfigurationError):
            BaseStreamAdapter({"timeout": "soon"})

    def test_mapping_config(self):
        adapter = BaseStreamAdapter({"host": "media.example.com"})
        assert adapter.config.host == "media.example.com"
        assert adapter.config.app == "live"


class TestPaginate:
    """Listing helpers."""

    def test_filter_then_slice(self):
        streams = [
            Stream(id=f"s{i}", name=f"n{i}", status=StreamStatus.PUBLISHING if i % 2 else StreamStatus.IDLE)
            for i in range(6)
        ]

        live = paginate(streams, ListOptions(filter={"status": StreamStatus.PUBLISHING}))
        assert [s.id for s in live] == ["s1", "s3", "s5"]

        page = paginate(streams, ListOptions(offset=2, limit=3))
        assert [s.id for s in page] == ["s2", "s3", "s4"]

        assert len(paginate(streams)) == 6
