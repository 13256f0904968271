# Routes package init
"""
Riffle Backend — API Routes Package
=====================================

What:  HTTP handlers. Each one reads the request, calls a service, and
       shapes the response; business rules live in services/.

Route Inventory:
    - journal.py: GET/POST/PUT/DELETE /api/journal
    - health.py:  GET /health (also the offline client's connectivity probe)
"""
