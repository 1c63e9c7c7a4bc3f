import json
import re
from datetime import datetime
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from lembrete.config.prompts import CLASSIFY_REMINDER_PROMPT
from lembrete.config.settings import (
    DEFAULT_TIMEZONE,
    LLM_MODEL,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
)
from lembrete.datamodel import ClassifiedRequest
from lembrete.llm.base import Classifier
from lembrete.logger import logger
from lembrete.utils import format_user_local

_CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_classification(raw: str) -> ClassifiedRequest:
    """解析模型返回的 JSON，格式错误时抛出 ValueError"""
    cleaned = _CODE_FENCE_PATTERN.sub("", raw.strip())
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError(f"模型返回的不是 JSON 对象: {raw!r}")

    should_schedule = data.get("shouldSchedule", data.get("shouldRemind", False))
    return ClassifiedRequest(
        should_schedule=bool(should_schedule),
        date=_optional_str(data.get("date")),
        time=_optional_str(data.get("time")),
        timezone=_optional_str(data.get("timezone")),
        content=_optional_str(data.get("content")),
        recipient_hint=_optional_str(data.get("recipient")),
    )


class OpenAIClassifier(Classifier):
    def __init__(
        self,
        api_key: str | None = OPENAI_API_KEY,
        base_url: str = OPENAI_BASE_URL,
        model: str = LLM_MODEL,
        timezone: str = DEFAULT_TIMEZONE,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self.timezone = timezone
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
        )

    async def classify(self, text: str, now: datetime) -> ClassifiedRequest:
        instructions = CLASSIFY_REMINDER_PROMPT.format(
            now_local=format_user_local(now, self.timezone, "%A, %Y-%m-%d %H:%M:%S"),
            timezone=self.timezone,
        )
        try:
            logger.trace(f"LLM请求发起 BaseUrl:{self.base_url}; Model:{self.model}; Text:{text}")
            response = await self.client.responses.create(
                model=self.model,
                instructions=instructions,
                input=text,
                temperature=0.2,
            )
            logger.trace(f"LLM请求收到响应: {response.output_text}")
            return parse_classification(response.output_text or "")
        except (OpenAIError, ValueError) as e:
            logger.error(f"提醒解析失败，按普通消息处理: {e}")
            return ClassifiedRequest(should_schedule=False)
