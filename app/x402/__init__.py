# app/x402/__init__.py
"""
x402 pay-per-access core.

Implements the request/quote/intent/settlement handshake that lets a buyer
pay for a digital asset and later prove entitlement to it.

Key components:
- quotes: QuoteIssuer, priced payment challenges with x402 headers
- intents: IntentProposer, relays signed intents to the settlement Gateway
- settlement: SettlementNotifier, exactly-once finalization of callbacks
- entitlements: EntitlementChecker and signed resource URLs
- store: SQLite persistence for quotes, transactions and entitlements
- pricing: Asset policy pricing
- session: Caller identity from session bearer tokens
- audit: Transaction audit logging

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
