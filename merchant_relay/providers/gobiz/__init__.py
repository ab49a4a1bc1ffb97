"""GoBiz provider implementation package.

This package contains the GoBiz merchant portal integration: token lifecycle,
the retrying authenticated client, the login flows, and the merchant ledger
lookups, all reachable through the GoBizProvider facade.
"""

from merchant_relay.providers.gobiz.provider import GoBizProvider

__all__ = ["GoBizProvider"]
