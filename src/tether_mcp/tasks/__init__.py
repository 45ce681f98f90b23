"""Background task execution."""

from . import models
from .executor import Services, TaskExecutor
from .models import Task, TaskResult

__all__ = ["Services", "Task", "TaskExecutor", "TaskResult", "models"]
