"""
Tenant Core

Tenant membership, per-session active-tenant context, a central
authorization guard, global tag inheritance and an append-only audit
trail, served as a FastAPI application.
"""

__version__ = "1.0.0"
