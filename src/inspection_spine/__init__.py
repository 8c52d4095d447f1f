"""
Inspection Spine - recurrence and occurrence generation for asset inspections.

Subpackages:
- inspection_spine.core: errors, logging, settings, store primitives, models
- inspection_spine.scheduling: scope, recurrence, guard, generator, events,
  runner and the periodic scheduler service
- inspection_spine.cli: ``inspection-spine`` operator CLI
"""

__version__ = "0.1.0"
