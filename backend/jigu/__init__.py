"""
Jigu Server: Application Package
================================

What: Backend for the Jigu script workbench (scripts CRUD, completions proxy,
      structured log storage).
Who:  Imported by uvicorn (`jigu.main:app`), by the runner (`python -m jigu`)
      and by the test suite.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Business Logic)   │  ← scripts, logs, completions
    ├─────────────────────────────────────┤
    │     DAL / Models / Schemas (Data)   │  ← MongoDB documents + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async PyMongo client
    └─────────────────────────────────────┘

    Cross-cutting:
    - AppContext (context.py) owns every long-lived resource and is handed to
      routes through `request.app.state.context`.
    - GracefulShutdown (shutdown.py) drains those resources on termination.
"""

__version__ = "1.0.0"
