from google import genai
from google.genai import types
import os
import re
import json
import asyncio
import logging

import httpx

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
REQUEST_TIMEOUT_MS = 30000

_JSON_SPAN = re.compile(r"\{[\s\S]*\}")
_RESPONSE_FIELDS = ("text", "action", "amount", "category", "note", "payment", "product", "quantity", "tips")


class AIServiceError(Exception):
    """Raised when the language model call fails or returns nothing usable."""


class AIService:
    def __init__(self, api_key=None, model=None, timeout_ms=REQUEST_TIMEOUT_MS):
        self.api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY not found in environment variables")

        self.model_name = model or os.getenv("GEMINI_MODEL", DEFAULT_MODEL)
        self.client = genai.Client(
            api_key=self.api_key,
            http_options=types.HttpOptions(timeout=timeout_ms),
        )

    @staticmethod
    def _to_contents(messages):
        """Split chat messages into a system instruction and Gemini contents."""
        system_parts = []
        contents = []
        for message in messages:
            role = message["role"]
            if role == "system":
                system_parts.append(message["content"])
                continue
            contents.append(types.Content(
                role="model" if role == "assistant" else "user",
                parts=[types.Part(text=message["content"])],
            ))
        return "\n\n".join(system_parts) or None, contents

    async def chat(self, messages, temperature=0.8):
        """
        Sends a conversation (system/user/assistant messages) and returns the reply text.
        """
        system_instruction, contents = self._to_contents(messages)
        logger.info(f"LLM request: model={self.model_name} msgs={len(contents)} temp={temperature}")

        try:
            # Execute in thread to prevent blocking the event loop
            response = await asyncio.to_thread(
                self.client.models.generate_content,
                model=self.model_name,
                contents=contents,
                config=types.GenerateContentConfig(
                    system_instruction=system_instruction,
                    temperature=temperature,
                    max_output_tokens=800,
                    top_p=0.9,
                ),
            )
        except (TimeoutError, httpx.TimeoutException) as e:
            logger.error("LLM request timed out")
            raise AIServiceError("请求超时，请稍后重试") from e
        except Exception as e:
            logger.error(f"LLM request failed: {e}")
            raise AIServiceError(str(e)) from e

        content = response.text
        if not isinstance(content, str) or not content.strip():
            raise AIServiceError("AI返回空响应")

        logger.info(f"LLM response: {content[:80]}")
        return content.strip()

    async def get_business_advice(self, financial_summary):
        """
        Generates advice based on a summary of this month's business.
        """
        prompt = f"""
        你是一家小店老板的经营顾问。请分析下面的本月经营汇总。

        数据:
        {financial_summary}

        请给出简洁、专业的分析，包括:

        1.  **经营体检**:
            *   **利润率**: (净利润 / 收入)，目标 > 60%。
            *   **成本占比**: 支出超过收入的 40% 要提醒。
            *   **环比**: 与上月相比的变化。

        2.  **月底预测**: 按日均收入预测本月总收入。

        3.  **行动建议**:
            *   找出收入最高的服务项目，建议如何提升客单价。
            *   如有库存偏低的商品，提醒补货。

        语气: 直接、务实，不用表情。
        结构: 使用要点列表。
        """

        try:
            return await self.chat([{"role": "user", "content": prompt}], temperature=0.7)
        except AIServiceError as e:
            return "抱歉，暂时无法生成经营建议。" + str(e)


def _pick_fields(parsed):
    if isinstance(parsed, dict) and (parsed.get("text") or parsed.get("action")):
        return {key: parsed.get(key) for key in _RESPONSE_FIELDS}
    return None


def parse_ai_response(content):
    """
    Reads the {"text": ..., "tips": [...]} reply format, tolerating prose around
    the JSON. Anything unparseable comes back as plain text.
    """
    trimmed = content.strip()
    try:
        if trimmed.startswith("{"):
            picked = _pick_fields(json.loads(trimmed))
            if picked:
                return picked

        match = _JSON_SPAN.search(trimmed)
        if match:
            picked = _pick_fields(json.loads(match.group(0)))
            if picked:
                return picked
    except json.JSONDecodeError:
        logger.info("LLM reply is not valid JSON, using plain text")

    return {"text": trimmed}
