# Services package init
"""
Jigu Server: Services Layer
===========================

What:  Business logic between the routes (HTTP) and the DAL / MongoDB.

Service Inventory:
    - ScriptService:      script CRUD, search and stats
    - CompletionService:  streaming proxy to the completions upstream
    - LogService:         structured log recording, query, stats, retention
        - log_routing:    level/type → StoragePolicy
        - log_writer:     StoragePolicy → console / database / file sinks
        - log_queue:      bounded batching between the two

Services are built by AppContext and reached through `request.app.state`,
never through module-level singletons.
"""
