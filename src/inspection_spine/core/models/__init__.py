"""Dataclass models for the engine's schema tables.

Field names match the SQL columns of ``core/schema/01_scheduling.sql``
except where a column holds JSON (``scope``, ``rule``, ``assignment``) or a
group of flat columns maps onto one policy object (``due_rules``,
``constraints``, ``notifications``).

Modules
-------
scheduling
    Tables from ``01_scheduling.sql`` -- schedules, scheduling events,
    generated occurrences -- plus the tagged scope and rule variants.
"""

from inspection_spine.core.models.scheduling import *  # noqa: F401,F403
from inspection_spine.core.models.scheduling import __all__  # noqa: F401
