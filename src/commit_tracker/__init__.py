"""Commit Tracker: mirrors commits from watched repositories into a tracking log.

This package provides the change detector, cached git wrapper, append-only log
writer and push reconciler that keep a dedicated tracking repository in step
with the commits made elsewhere, plus the daemon and command-line interface
that drive them.
"""

from . import (
    appender,
    cache,
    classifier,
    cli,
    config,
    constants,
    cursor,
    daemon,
    detector,
    errors,
    events,
    git_wrapper,
    models,
    reconciler,
    status,
    system,
    tracker,
)

__all__ = [
    "appender",
    "cache",
    "classifier",
    "cli",
    "config",
    "constants",
    "cursor",
    "daemon",
    "detector",
    "errors",
    "events",
    "git_wrapper",
    "models",
    "reconciler",
    "status",
    "system",
    "tracker",
]
