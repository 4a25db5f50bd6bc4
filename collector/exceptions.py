"""
Operator-facing errors raised by the collector services.

The API maps them to HTTP status codes:
    InvalidTaskConfig -> 400, UnknownSource -> 404, InvalidTransition -> 409
"""


class CollectorError(Exception):
    """Base class for collector errors."""


class InvalidTaskConfig(CollectorError):
    """A task configuration failed validation."""


class UnknownSource(CollectorError):
    """A referenced source does not exist."""

    def __init__(self, source_id):
        super().__init__(f"Unknown source: {source_id}")
        self.source_id = source_id


class UnknownTask(CollectorError):
    """A referenced collection task does not exist."""

    def __init__(self, task_id):
        super().__init__(f"Unknown task: {task_id}")
        self.task_id = task_id


class InvalidTransition(CollectorError):
    """A task status change is not allowed from the current status."""

    def __init__(self, task_id, current: str, requested: str):
        super().__init__(f"Task {task_id} cannot go from {current} to {requested}")
        self.task_id = task_id
        self.current = current
        self.requested = requested
