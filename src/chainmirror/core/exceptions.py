"""chainmirror exception hierarchy.

Typed exceptions let callers tell transient failures from fatal ones and let
``CancelledError`` propagate untouched through every error boundary.

Exception hierarchy:

```text
ChainMirrorError (base -- never raised directly)
├── ConfigurationError          -- config validation, missing keys, bad YAML
├── DatabaseError               -- local store failures
│   ├── ConnectionPoolError     -- transient: pool exhausted, network blip
│   └── QueryError              -- permanent: bad SQL, constraint violation
├── SourceError                 -- upstream data source failures
│   └── SourcesUnavailableError -- every failover candidate was exhausted
└── JobError                    -- job scheduling contract violations
    └── JobAlreadyRunningError  -- a run for the same job identity is active
```

See Also:
    [ResilientQueryExecutor][chainmirror.core.executor.ResilientQueryExecutor]:
        Raises [SourcesUnavailableError][chainmirror.core.exceptions.SourcesUnavailableError]
        and [QueryError][chainmirror.core.exceptions.QueryError].
    [BaseJob][chainmirror.core.base_job.BaseJob]: Raises
        [JobAlreadyRunningError][chainmirror.core.exceptions.JobAlreadyRunningError].
"""

from __future__ import annotations


class ChainMirrorError(Exception):
    """Base exception for all chainmirror errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(ChainMirrorError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseError(ChainMirrorError):
    """Base for all database-related errors, local or upstream."""


class ConnectionPoolError(DatabaseError):
    """Transient database error: pool exhausted, connection refused, network blip.

    Callers may retry after a backoff.
    """


class QueryError(DatabaseError):
    """Permanent database error: bad SQL, constraint violation, mapping failure.

    Callers should NOT retry -- the query itself is wrong. The upstream
    executor raises it without trying further sources.
    """


# ---------------------------------------------------------------------------
# Upstream sources
# ---------------------------------------------------------------------------


class SourceError(ChainMirrorError):
    """Base for upstream data source failures."""


class SourcesUnavailableError(SourceError):
    """Every failover candidate exhausted its retries.

    Attributes:
        last_error: The exception raised by the final attempt on the final
            candidate. Also chained as ``__cause__``.
        attempted: Names of the sources tried, in order.
    """

    def __init__(
        self,
        message: str,
        *,
        last_error: BaseException | None = None,
        attempted: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.last_error = last_error
        self.attempted = attempted


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class JobError(ChainMirrorError):
    """Base for job scheduling contract errors."""


class JobAlreadyRunningError(JobError):
    """A second run was requested while the same job identity is running."""
