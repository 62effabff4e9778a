# Routes package init
"""
Jigu Server: API Routes Package
===============================

What:  HTTP route handlers; thin wrappers that validate input, call a service
       from the AppContext and wrap the result in the response envelope.

Route Inventory:
    - scripts.py:      /api/v1/scripts     (CRUD, search, stats)
    - completions.py:  /api/v1/completions (streaming proxy)
    - logs.py:         /api/logs           (query, stats, cleanup, record)
    - health.py:       /health
"""
