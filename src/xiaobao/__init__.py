"""Xiaobao - children's literacy newspaper generation backend."""

__version__ = "1.0.0"

from xiaobao.core.config import XiaobaoConfig, config
from xiaobao.core.engine import TaskEngine
from xiaobao.core.models import Task, WordList

__all__ = [
    "TaskEngine",
    "Task",
    "WordList",
    "XiaobaoConfig",
    "config",
]
