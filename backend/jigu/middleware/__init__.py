# Middleware package init
"""
Jigu Server: Middleware Package
===============================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Request ID] → [HTTP Logging] → [GZip] → [CORS] → Route Handler

    - Request ID runs before logging so the access-log entry carries the id.
    - HTTP Logging sees the final status, including error responses built by
      the exception handlers.
"""
