"""Models layer: pure data containers with zero I/O.

Sits at the bottom of the dependency graph. Depended upon by
``chainmirror.core`` and ``chainmirror.jobs``; imports only the standard
library.

Attributes:
    TableSpec: Write-side description of a mirrored table.
        See [TableSpec][chainmirror.models.table.TableSpec].
    WorkUnit: Retryable unit of work owned by a job.
        See [WorkUnit][chainmirror.models.work_unit.WorkUnit].
    JobName, JobState, CircuitState: Shared enumerations.
"""

from .constants import CircuitState, JobName, JobState
from .table import TableSpec
from .work_unit import WorkUnit


__all__ = [
    "CircuitState",
    "JobName",
    "JobState",
    "TableSpec",
    "WorkUnit",
]
