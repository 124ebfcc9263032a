"""
GuardWatch alert pipeline.

The backend core of a parental-monitoring platform: telemetry from a
child's device (calls, messages, location fixes, media) is run through
detectors, throttled per user and alert type, persisted, and delivered to
the guardian by email and push with retries.

This package provides:
- Data models for telemetry, alerts, and delivery
- Detectors for messages, calls, locations, and media
- The throttle gate, alert store, delivery queue and worker
- Email and push couriers
- Configuration management and storage clients for Redis and PostgreSQL
"""

__version__ = "0.1.0"
