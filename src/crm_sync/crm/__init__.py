"""CRM sync layer -- one capability interface, three provider clients.

Provides the CRMClient interface with concrete implementations:
- HubSpotClient: contacts/deals via CRM v3, activities via Engagements
- SalesforceClient: Lead, Task and Opportunity sobjects
- PipedriveClient: persons, activities and deals
- CredentialManager: decrypts and transparently refreshes OAuth credentials
- CRMSyncManager: mirrors leads and sent actions into connected CRMs

Sync is one-way (local -> CRM). Mappings make re-sync idempotent.
"""

from src.crm_sync.crm.adapter import CRMClient
from src.crm_sync.crm.credentials import CredentialManager
from src.crm_sync.crm.hubspot import HubSpotClient
from src.crm_sync.crm.oauth import OAuthClient
from src.crm_sync.crm.pipedrive import PipedriveClient
from src.crm_sync.crm.repository import CRMRepositories
from src.crm_sync.crm.salesforce import SalesforceClient
from src.crm_sync.crm.sync import (
    CredentialClientFactory,
    CRMSyncManager,
    get_connected_crms,
    sync_lead_to_all_crms,
)

__all__ = [
    "CRMClient",
    "HubSpotClient",
    "SalesforceClient",
    "PipedriveClient",
    "OAuthClient",
    "CredentialManager",
    "CRMRepositories",
    "CRMSyncManager",
    "CredentialClientFactory",
    "sync_lead_to_all_crms",
    "get_connected_crms",
]
