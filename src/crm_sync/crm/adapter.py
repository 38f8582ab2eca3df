"""CRM client abstract base class -- the capability interface every provider implements.

HubSpot, Salesforce and Pipedrive each implement this ABC over their own REST
API and object model. Implementations own their field-mapping tables and
share no mutable state.

Contract shared by every implementation:
- Methods returning SyncResult never raise; provider errors are reported as
  ``SyncResult(success=False, error=...)``.
- Lookup methods return None on any failure, not only on 404.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from src.crm_sync.crm.schemas import (
    Activity,
    Contact,
    ContactUpdate,
    Deal,
    DealUpdate,
    SyncResult,
)


class CRMClient(ABC):
    """Abstract interface for one provider's CRM operations.

    Methods:
        create_contact: Create the native contact object.
        update_contact: Partially update a contact by remote ID.
        get_contact: Fetch a contact by remote ID (None if not retrievable).
        find_contact_by_email: Search for an existing contact by email.
        create_activity: Log an email/call/meeting/note against a contact.
        create_deal: Create a deal/opportunity linked to a contact.
        update_deal: Partially update a deal by remote ID.
    """

    provider: str

    @abstractmethod
    async def create_contact(self, contact: Contact) -> SyncResult:
        """Create contact, return SyncResult with remote ID."""
        ...

    @abstractmethod
    async def update_contact(self, remote_id: str, contact: ContactUpdate) -> SyncResult:
        """Update only the supplied contact fields."""
        ...

    @abstractmethod
    async def get_contact(self, remote_id: str) -> Contact | None:
        """Fetch contact by remote ID."""
        ...

    @abstractmethod
    async def find_contact_by_email(self, email: str) -> Contact | None:
        """Find an existing contact by email."""
        ...

    @abstractmethod
    async def create_activity(self, activity: Activity) -> SyncResult:
        """Log an activity, return SyncResult with remote ID."""
        ...

    @abstractmethod
    async def create_deal(self, deal: Deal) -> SyncResult:
        """Create deal/opportunity, return SyncResult with remote ID."""
        ...

    @abstractmethod
    async def update_deal(self, remote_id: str, deal: DealUpdate) -> SyncResult:
        """Update only the supplied deal fields."""
        ...
