"""
Curve Spine - versioning, freshness and scheduling engine for market
forecast curves.

Layers:
- curvespine.core: errors, enums, logging, settings, timestamps, ORM
- curvespine.curves: definitions, instances, freshness, schedules, merge
- curvespine.ops: operation envelope for administrative callers
- curvespine.cli: ``curvespine`` command line
"""

__version__ = "0.1.0"
