"""Stage 2: Task Generation"""

from .generator import TaskGenerator, task_id
from .answer_filter import AnswerFilter

__all__ = ["TaskGenerator", "AnswerFilter", "task_id"]
