import pytest

from app.domain.portal.errors import (
    GENERIC_ERROR_MESSAGE,
    MAX_ERROR_LENGTH,
    MissingAdminKeyError,
    PortalDecodeError,
    PortalHTTPError,
    PortalNotLinkedError,
    PortalRenderError,
    PortalTransportError,
    format_sync_error,
)


@pytest.mark.parametrize(
    "exc,expected",
    [
        (MissingAdminKeyError(), "Missing PORTAL_ADMIN_KEY."),
        (PortalHTTPError(404, "Not Found"), "Portal backend HTTP 404. Not Found"),
        (PortalHTTPError(500), "Portal backend HTTP 500."),
        (PortalDecodeError("<html>"), "Portal backend decode failed. <html>"),
        (PortalTransportError(""), "Portal backend unreachable."),
        (PortalTransportError("timed out"), "Portal backend unreachable. timed out"),
        (PortalNotLinkedError("contract"), "Contract is not linked to a client."),
        (PortalRenderError(""), "PDF rendering failed."),
        (ValueError("  bad value  "), "bad value"),
        (RuntimeError(""), GENERIC_ERROR_MESSAGE),
        (None, GENERIC_ERROR_MESSAGE),
    ],
)
def test_format_sync_error(exc, expected):
    assert format_sync_error(exc) == expected


def test_format_sync_error_is_bounded():
    message = format_sync_error(RuntimeError("word " * 200))
    assert len(message) <= MAX_ERROR_LENGTH
    assert message == message.strip()
    assert message.startswith("word word")
