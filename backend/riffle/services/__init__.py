# Services package init
"""
Riffle Backend — Services Layer
=================================

What:  Business rules between the routes (HTTP) and the database.

Service Inventory:
    - JournalService: entry CRUD, free-tier monthly quota, Idempotency-Key replay
    - auth_service:   login token verification and the CurrentUser dependency
"""
