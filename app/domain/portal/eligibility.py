"""Portal eligibility gate"""

from typing import Optional, Union

from ...models import Client, Contract
from ...models_invoice import Invoice

PortalDocument = Union[Invoice, Contract]


def owning_client(document: PortalDocument) -> Optional[Client]:
    if isinstance(document, Contract):
        return document.resolved_client
    return document.client


def is_eligible(document: PortalDocument) -> bool:
    """True iff the document has an owning client with portal access enabled"""
    client = owning_client(document)
    if client is None:
        return False
    return bool(client.portal_enabled)


def reset_ineligible_state(document: PortalDocument) -> None:
    """Clear sync flags so no stale pending/uploading/error state is shown"""
    document.portal_needs_upload = False
    document.portal_upload_in_flight = False
    document.portal_upload_started_at_ms = None
    document.portal_last_upload_error = None
