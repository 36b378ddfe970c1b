"""
adr_kernel -- Shared infrastructure for the ADR orchestration engine.

Provides structured JSON logging, the typed exception hierarchy, the
SQLAlchemy declarative base with engine/session helpers, and the injectable
Clock.  Nothing in adr_kernel imports from adr_orchestration.
"""
