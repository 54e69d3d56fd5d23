"""Shared background runner accessor."""

from __future__ import annotations

from memoria.config import get_settings
from memoria.tasks.runner import BackgroundRunner

_runner: BackgroundRunner | None = None


def get_background_runner() -> BackgroundRunner:
    global _runner
    if _runner is None or _runner.closed:
        settings = get_settings()
        _runner = BackgroundRunner(max_concurrent=int(settings.task_runner_max_concurrent))
    return _runner


def reset_background_runner() -> None:
    global _runner
    _runner = None
