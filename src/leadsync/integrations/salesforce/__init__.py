"""Salesforce provider layer for lead sync.

- mapper: pure Contact/Lead -> lead row mapping, validation and SOQL builders
- TokenManager: refresh_token grant against the Salesforce login host
- SalesforceClient: authenticated SOQL queries with retry, backoff and
  a single transparent token refresh on 401
"""

from src.leadsync.integrations.salesforce.client import SalesforceClient
from src.leadsync.integrations.salesforce.mapper import (
    build_contact_query,
    build_lead_query,
    is_valid_contact,
    is_valid_lead,
    map_contact,
    map_lead,
    sanitize,
)
from src.leadsync.integrations.salesforce.token_manager import TokenManager

__all__ = [
    "SalesforceClient",
    "TokenManager",
    "map_contact",
    "map_lead",
    "sanitize",
    "is_valid_contact",
    "is_valid_lead",
    "build_contact_query",
    "build_lead_query",
]
