# Services package init
"""
Bulwark API — Services Layer
==============================

What:  The logic behind the middleware and routes.

Service Inventory:
    - AbuseDetector:      per-client two-tier request classification
    - LocalCounter /
      StoreBackedCounter: counter storage strategies used by the detector
    - RedisService:       the process's Redis connection (optional dependency)
"""
