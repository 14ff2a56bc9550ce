# Routes package init
"""
Bulwark API — API Routes Package
==================================

Route Inventory:
    - health.py:  GET /api/{version}/health        (dependency status)
                  GET /api/{version}/health/live   (liveness probe)
                  GET /api/{version}/health/ready  (readiness probe)
"""
