"""
Shipment Tracking

Quick Start:
    from src.app.core.config import settings
    from src.app.services.tracking import ShipmentTracker

    tracker = ShipmentTracker.from_settings(settings)
    result = await tracker.track("1806203236")
"""

from .tracker import ShipmentTracker

__all__ = ["ShipmentTracker"]
