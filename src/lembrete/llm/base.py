from abc import ABC, abstractmethod
from datetime import datetime

from lembrete.datamodel import ClassifiedRequest

__all__ = ["Classifier"]


class Classifier(ABC):
    @abstractmethod
    async def classify(self, text: str, now: datetime) -> ClassifiedRequest:
        """从自由文本中抽取提醒请求；无法判断时返回 should_schedule=False"""
