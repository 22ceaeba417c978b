"""Active Directory (LDAP) client package.

Public API:
    - ADConfig
    - UserRecord
    - ADClient
"""

from .models import ADConfig, UserRecord
from .client import ADClient

__all__ = ["ADConfig", "UserRecord", "ADClient"]
