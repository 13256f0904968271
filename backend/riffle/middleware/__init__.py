# Middleware package init
"""
Riffle Backend — Middleware Package
=====================================

What:  Concerns applied to every request before any route runs.

Middleware Chain:
    Request → [Request ID] → [Rate Limit] → [Logging] → [GZip] → [CORS] → Route

    The request id is assigned first so a 429 answer and the access log
    line both carry it. Responses pass back through the chain in reverse.
"""
