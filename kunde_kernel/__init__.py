"""
Kunde Kernel - infrastructure for the customer import pipeline.

Provides:
- SQLAlchemy declarative base, engine and session scope
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with request-scoped context
- Injectable clock and bounded TTL store
- Deterministic hashing
"""

__version__ = "0.1.0"
