"""
Identity Import & Synchronization

Pulls user and group records from an external identity source, maps them
through a configurable attribute mapping, matches them against previously
imported identities and applies idempotent create/update operations.

Supports:
- Cloud IdP sources (OAuth2 client credentials, paginated Users/Groups API)
- Custom HTTP/JSON import URLs
- Per-field regex substitution transforms
- Dry-run analysis and live imports tracked as pollable tasks
"""

__version__ = "0.1.0"
