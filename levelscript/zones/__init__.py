"""Walk-into trigger, deny, zone-audio and ambience zones."""

from levelscript.zones.triggers import TriggerZoneEvaluator, point_in_zone

__all__ = [
    "TriggerZoneEvaluator",
    "point_in_zone",
]
