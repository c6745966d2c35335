"""Task engine for long-running, cancellable range-counting work.

Why not Celery / RQ / Dramatiq?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The unit of work is tiny (advance a counter once per tick) while the
lifecycle around it is the hard part: single-writer ownership of each
record, cooperative cancellation observed within one tick, throttled
progress flushes, resumption after a restart and sweeping of stale rows.
A broker would add an operational dependency for a single-process,
SQLite-backed tool and still leave all of the above as custom logic inside
the task body.  A bounded thread pool plus compare-and-swap writes against
the store is the right trade-off for this scope.
"""
