"""Pool delegators job package.

Re-exports the public symbols::

    from chainmirror.jobs.pool_delegators import PoolDelegatorsJob, PoolDelegatorsConfig
"""

from .configs import PoolDelegatorsConfig
from .job import PoolDelegatorsJob


__all__ = [
    "PoolDelegatorsConfig",
    "PoolDelegatorsJob",
]
