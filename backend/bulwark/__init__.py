"""
Bulwark API — Application Package
===================================

What: Request-protection layer for the CRUD service: DDoS/abuse detection
      with Redis-shared or in-process counters, per-IP rate limiting,
      activity logging and health probes.

Layout:
    ┌─────────────────────────────────────┐
    │      Middleware (per request)       │  ← DDoS detection, rate limit, logging
    ├─────────────────────────────────────┤
    │         Routes (API Layer)          │  ← health probes
    ├─────────────────────────────────────┤
    │     Services (Detection Logic)      │  ← AbuseDetector, counters, Redis
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
