# Middleware package init
"""
ProBD Backend - Middleware Package
==================================

Middleware Chain (HTTP requests only; the live WebSocket bypasses all three):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route

    - Rate limit runs first so rejected requests cost nothing downstream
    - Request ID is set before logging so every access line carries it
    - Responses travel back through the same chain in reverse
"""
