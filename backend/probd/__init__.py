"""
ProBD Backend - Application Package
===================================

What: Backend for ProfessionalsBD, a marketplace connecting clients with
      verified professionals in Bangladesh.
Who:  Imported by uvicorn (`probd.main:app`), Alembic and pytest.

Layering:

    ┌─────────────────────────────────────┐
    │     Routes (HTTP + WebSocket)       │  ← request/response shapes only
    ├─────────────────────────────────────┤
    │   Services (orchestration, SDKs)    │  ← Stream Video, Gemini, sessions
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "2.6.0"
