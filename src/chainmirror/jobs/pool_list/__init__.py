"""Pool list job package.

Re-exports the public symbols::

    from chainmirror.jobs.pool_list import PoolListJob, PoolListConfig
"""

from .configs import PoolListConfig
from .job import PoolListJob


__all__ = [
    "PoolListConfig",
    "PoolListJob",
]
