import base64
import json

from loguru import logger
from openai import OpenAI, OpenAIError
from pydantic import BaseModel, ValidationError

from splitbill.errors import OracleDegradedError
from splitbill.llm.prompts import (
    ALLOCATION_PROMPT,
    RECEIPT_PROMPT,
    REPHRASE_PROMPT,
    TRANSACTION_PROMPT,
)
from splitbill.models.schemas import (
    AllocationResult,
    ExtractionResult,
    ReceiptItem,
    ReceiptResult,
)


def strip_code_fences(raw: str) -> str:
    raw = raw.strip()
    if raw.startswith("```"):
        lines = raw.split("\n")
        lines = [l for l in lines if not l.startswith("```")]
        raw = "\n".join(lines)
    return raw.strip()


class ExtractionOracle:
    """LLM-backed extraction of transactions, receipts and item allocations.

    Every public method returns a neutral result instead of raising when the
    model fails or answers with something that doesn't fit the schema, so a
    broken model call reads as "nothing detected" to the rest of the bot.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        vision_model: str | None = None,
        client: OpenAI | None = None,
    ):
        self.client = client or OpenAI(
            base_url="https://openrouter.ai/api/v1",
            api_key=api_key,
        )
        self.model = model
        self.vision_model = vision_model or model

    def _complete(self, messages: list[dict], model: str | None = None, temperature: float = 0.1) -> str:
        try:
            response = self.client.chat.completions.create(
                model=model or self.model,
                messages=messages,
                temperature=temperature,
            )
        except OpenAIError as e:
            raise OracleDegradedError(f"LLM request failed: {e}") from e

        try:
            raw = (response.choices[0].message.content or "").strip()
        except (IndexError, TypeError, AttributeError) as e:
            raise OracleDegradedError(f"LLM returned no usable choice: {e}") from e
        logger.debug("LLM raw response: {}", raw)
        return raw

    def _complete_json(self, messages: list[dict], schema: type[BaseModel], model: str | None = None):
        raw = strip_code_fences(self._complete(messages, model=model))
        try:
            return schema.model_validate(json.loads(raw))
        except json.JSONDecodeError as e:
            raise OracleDegradedError(f"LLM response is not JSON: {e}") from e
        except ValidationError as e:
            raise OracleDegradedError(f"LLM response does not match {schema.__name__}: {e}") from e

    def extract_transactions(self, text: str, sender: str) -> ExtractionResult:
        messages = [
            {"role": "system", "content": TRANSACTION_PROMPT.format(sender=sender)},
            {"role": "user", "content": text},
        ]
        try:
            return self._complete_json(messages, ExtractionResult)
        except OracleDegradedError as e:
            logger.error("Transaction extraction degraded: {}", e)
            return ExtractionResult(is_transaction=False)

    def extract_receipt(self, image: bytes, mime_type: str = "image/jpeg") -> ReceiptResult:
        encoded = base64.b64encode(image).decode("ascii")
        messages = [
            {"role": "system", "content": RECEIPT_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "Read this receipt."},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                    },
                ],
            },
        ]
        try:
            return self._complete_json(messages, ReceiptResult, model=self.vision_model)
        except OracleDegradedError as e:
            logger.error("Receipt extraction degraded: {}", e)
            return ReceiptResult(success=False)

    def allocate_items(self, text: str, items: list[ReceiptItem], sender: str) -> AllocationResult:
        receipt_items = json.dumps([item.model_dump() for item in items])
        messages = [
            {"role": "system", "content": ALLOCATION_PROMPT.format(sender=sender)},
            {
                "role": "user",
                "content": f"Sender: {sender}\nMessage: {text!r}\nReceipt items: {receipt_items}",
            },
        ]
        try:
            return self._complete_json(messages, AllocationResult)
        except OracleDegradedError as e:
            logger.error("Item allocation degraded: {}", e)
            return AllocationResult(allocations=[])

    def rephrase(self, message: str) -> str:
        messages = [
            {"role": "system", "content": REPHRASE_PROMPT},
            {"role": "user", "content": f"System message: {message!r}"},
        ]
        try:
            rephrased = self._complete(messages, temperature=0.7)
        except OracleDegradedError as e:
            logger.warning("Rephrase degraded, using template: {}", e)
            return message
        return rephrased or message
