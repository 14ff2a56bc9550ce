# Middleware package init
"""
Bulwark API — Middleware Package
==================================

What:  Cross-cutting protection and logging applied to every request.

Middleware Chain (order matters!):
    Request → [DDoS Detection] → [Rate Limit] → [Activity Log] → [GZip] → [CORS] → Route

    1. DDoS detection: counts every request, including ones the rate
       limiter rejects
    2. Rate limit: per-IP request budget for the API
    3. Activity log: request/response outcomes for what got through
    4. GZip / CORS: FastAPI-provided
"""
