"""Structured errors raised at the portal collaborator boundary"""

from typing import Optional

MAX_ERROR_LENGTH = 240
GENERIC_ERROR_MESSAGE = "Portal upload failed."


class PortalSyncError(Exception):
    """Base class for failures inside a reconciliation attempt"""

    @property
    def display_message(self) -> str:
        return str(self)


class PortalBackendError(PortalSyncError):
    """Base class for portal backend failures"""


class MissingAdminKeyError(PortalBackendError):
    @property
    def display_message(self) -> str:
        return "Missing PORTAL_ADMIN_KEY."


class PortalHTTPError(PortalBackendError):
    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Portal backend HTTP {status_code}")
        self.status_code = status_code
        self.body = body

    @property
    def display_message(self) -> str:
        return f"Portal backend HTTP {self.status_code}. {self.body}"


class PortalDecodeError(PortalBackendError):
    def __init__(self, body: str = ""):
        super().__init__("Portal backend decode failed")
        self.body = body

    @property
    def display_message(self) -> str:
        return f"Portal backend decode failed. {self.body}"


class PortalTransportError(PortalBackendError):
    """Network-level failure (connect, timeout, protocol)"""

    @property
    def display_message(self) -> str:
        detail = str(self).strip()
        return f"Portal backend unreachable. {detail}" if detail else "Portal backend unreachable."


class PortalNotLinkedError(PortalBackendError):
    """Document has no client to index it under"""

    def __init__(self, kind: str):
        super().__init__(f"{kind.capitalize()} is not linked to a client.")
        self.kind = kind


class PortalRenderError(PortalSyncError):
    """PDF rendering failed"""

    @property
    def display_message(self) -> str:
        detail = str(self).strip()
        return f"PDF rendering failed. {detail}" if detail else "PDF rendering failed."


def format_sync_error(exc: Optional[BaseException]) -> str:
    """User-presentable, bounded error string stored on the document"""
    if exc is None:
        return GENERIC_ERROR_MESSAGE
    if isinstance(exc, PortalSyncError):
        message = exc.display_message
    else:
        message = str(exc)
    message = message.strip()
    if not message:
        message = GENERIC_ERROR_MESSAGE
    if len(message) > MAX_ERROR_LENGTH:
        message = message[:MAX_ERROR_LENGTH].rstrip()
    return message
