# app/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module implements the server side of the x402 v2 payment protocol,
gating the fortune endpoint behind a per-request on-chain payment.

Key components:
- types: Wire models for requirements, payloads and facilitator replies
- encoding: Base64/JSON codec for the Payment-* headers
- requirements: Canonical payment requirements built from configuration
- gate: Per-request payment state machine (verify, settle, fulfil)
- audit: Transaction audit logging

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
