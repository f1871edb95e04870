"""UTxO info job package.

Re-exports the public symbols::

    from chainmirror.jobs.utxo_info import UtxoInfoJob, UtxoInfoConfig
"""

from .configs import UtxoInfoConfig
from .job import UtxoInfoJob


__all__ = [
    "UtxoInfoConfig",
    "UtxoInfoJob",
]
