"""
Service entry points for the alert pipeline.

Each subdirectory contains a standalone long-running service.

Services:
    alert-processor: Telemetry detection, throttling, and alert delivery
"""
