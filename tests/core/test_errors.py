"""Tests for domain error kinds and their HTTP mapping."""

import importlib.util
import warnings

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from prdigest.core import errors
from prdigest.core.errors import (
    ConfigurationError,
    FormatError,
    IntegrityError,
    UpstreamAPIError,
    ValidationError,
    register_error_handlers,
)


class TestUpstreamAPIError:
    def test_message_carries_status_and_body(self):
        exc = UpstreamAPIError(
            "Failed to configure webhook",
            status_code=422,
            body='{"message":"Validation Failed"}',
        )
        assert "422" in str(exc)
        assert '{"message":"Validation Failed"}' in str(exc)
        assert exc.status_code == 422

    def test_transport_failure_has_no_status(self):
        exc = UpstreamAPIError("Failed to fetch repositories: request timed out")
        assert exc.status_code is None
        assert exc.body == ""
        assert exc.headers == {}


def _app_raising(exc: Exception) -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/boom")
    async def boom():
        raise exc

    return app


@pytest.mark.parametrize(
    "exc, expected_status",
    [
        (ConfigurationError("GITHUB_APP_ID missing"), 500),
        (UpstreamAPIError("Failed", status_code=404, body="Not Found"), 502),
        (ValidationError("bad host"), 422),
        (FormatError("bad format"), 400),
        (IntegrityError("bad tag"), 400),
    ],
)
async def test_errors_become_plain_text_responses(exc, expected_status):
    transport = ASGITransport(app=_app_raising(exc))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        res = await ac.get("/boom")

    assert res.status_code == expected_status
    assert res.headers["content-type"].startswith("text/plain")
    assert res.text == str(exc)


def test_module_import_emits_no_deprecation_warning():
    """Status codes must not go through deprecated starlette aliases."""
    spec = importlib.util.spec_from_file_location("_errors_fresh_copy", errors.__file__)
    module = importlib.util.module_from_spec(spec)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        spec.loader.exec_module(module)

    assert [w for w in caught if issubclass(w.category, DeprecationWarning)] == []
    assert module.ValidationError.http_status == 422
