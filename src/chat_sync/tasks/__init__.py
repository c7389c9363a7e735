"""Durable sync task queue for eventual delivery of chat events.

Events are persisted first and delivered later by background passes, so a
caller never waits on the network. A pass loads PENDING and retryable FAILED
tasks, uploads them to the collector's batch endpoint, and records the
outcome on each task.

Why not APScheduler / Celery?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The queue is single-process and SQLite-only. What it needs from a scheduler
is narrow: a replace-on-reschedule immediate run, a keep-if-active periodic
cadence, deferral while the network is unreachable, and bounded backoff for
passes that raise. `scheduler.BackgroundSyncScheduler` does exactly that on
top of `threading.Timer`.
"""
