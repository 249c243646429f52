"""Generation backends for OMS Assist."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Protocol, Sequence

from openai import AsyncOpenAI

from omsassist.errors import ConfigurationError
from omsassist.formatting import format_date, format_money, pluralize
from omsassist.metrics.observability import PipelineMetrics
from omsassist.models import Order

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an order management assistant for a print and production shop. "
    "Answer using only the order data provided in the context. Be concise and specific: "
    "cite job numbers, customers, statuses, due dates and amounts exactly as given. "
    "When orders are overdue or due within two days, call that out first. "
    "If the context does not contain the answer, say so plainly instead of guessing."
)

SUMMARY_PREVIEW_ORDERS = 5


@dataclass(frozen=True)
class GenerationConfig:
    """Configuration for answer generation."""

    model: str = "gpt-4o-mini"
    max_tokens: int = 800
    temperature: float = 0.2
    timeout_seconds: float = 30.0
    use_model: bool = False
    api_key: str | None = None
    base_url: str | None = None


@dataclass(frozen=True)
class GeneratedAnswer:
    text: str
    model: str
    fallback: bool = False


class GenerationBackend(Protocol):
    """Protocol describing generation behaviour."""

    async def generate(self, *, question: str, context: str, orders: Sequence[Order]) -> GeneratedAnswer:
        """Return an answer grounded in ``context`` for ``question``."""


class SummaryGenerator:
    """Deterministic rule-based answers computed straight from the order list."""

    model = "summary"

    async def generate(self, *, question: str, context: str, orders: Sequence[Order]) -> GeneratedAnswer:
        return GeneratedAnswer(text=self.summarize(orders), model=self.model)

    def summarize(self, orders: Sequence[Order]) -> str:
        if not orders:
            return "No orders found for that request."
        if len(orders) == 1:
            return self._describe_single(orders[0])
        statuses = Counter(order.status or "Unknown" for order in orders)
        breakdown = ", ".join(f"{status}: {count}" for status, count in statuses.most_common())
        total = sum(order.pricing.total for order in orders)
        lines = [
            f"Found {pluralize(len(orders), 'order')}.",
            f"Status breakdown: {breakdown}.",
            f"Combined value: {format_money(total, orders[0].pricing.currency)}.",
        ]
        lines.extend(f"- {self._one_line(order)}" for order in orders[:SUMMARY_PREVIEW_ORDERS])
        remaining = len(orders) - SUMMARY_PREVIEW_ORDERS
        if remaining > 0:
            lines.append(f"...and {pluralize(remaining, 'more order')}.")
        return "\n".join(lines)

    @staticmethod
    def _one_line(order: Order) -> str:
        company = order.customer.company or "Unknown customer"
        return (
            f"Job {order.job_number} | {company} | {order.status or 'Unknown'} | "
            f"due {format_date(order.due_date)} | {format_money(order.pricing.total, order.pricing.currency)}"
        )

    def _describe_single(self, order: Order) -> str:
        lines = [f"Job {order.job_number} for {order.customer.company or 'an unknown customer'}."]
        if order.description:
            lines.append(f"Description: {order.description}")
        lines.append(f"Status: {order.status or 'Unknown'} (priority {order.priority}).")
        lines.append(f"Due: {format_date(order.due_date)}.")
        lines.append(f"Total: {format_money(order.pricing.total, order.pricing.currency)}.")
        if order.line_items:
            lines.append(f"{pluralize(len(order.line_items), 'line item')} on the order.")
        if order.shipments:
            shipped = sum(1 for shipment in order.shipments if shipment.shipped)
            lines.append(f"Shipments: {shipped} of {len(order.shipments)} shipped.")
        return "\n".join(lines)


class OpenAIGenerator:
    """Chat-completions generator that falls back to a deterministic summary on any failure."""

    def __init__(
        self,
        config: GenerationConfig | None = None,
        fallback: GenerationBackend | None = None,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._config = config or GenerationConfig()
        self._fallback = fallback or SummaryGenerator()
        self._client: AsyncOpenAI | None = client
        self._calls = 0
        self._failures = 0
        if self._client is None and self._config.use_model:
            if not self._config.api_key:
                raise ConfigurationError("An LLM API key is required when model generation is enabled")
            self._client = AsyncOpenAI(
                api_key=self._config.api_key,
                base_url=self._config.base_url,
                timeout=self._config.timeout_seconds,
            )
        if self._client is None:
            LOGGER.info("OpenAIGenerator running in summary-only mode.")

    @property
    def enabled(self) -> bool:
        return self._client is not None

    def stats(self) -> dict[str, int | str | bool]:
        return {"enabled": self.enabled, "model": self._config.model, "calls": self._calls, "failures": self._failures}

    async def generate(self, *, question: str, context: str, orders: Sequence[Order]) -> GeneratedAnswer:
        if self._client is None:
            return await self._fallback.generate(question=question, context=context, orders=orders)
        self._calls += 1
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self._config.model,
                    messages=self._build_messages(question=question, context=context),
                    temperature=self._config.temperature,
                    max_tokens=self._config.max_tokens,
                ),
                timeout=self._config.timeout_seconds,
            )
            text = (response.choices[0].message.content or "").strip()
            if not text:
                raise ValueError("empty completion")
            return GeneratedAnswer(text=text, model=self._config.model)
        except Exception as exc:  # noqa: BLE001 - any provider failure degrades to the summary
            self._failures += 1
            PipelineMetrics.record_generation_fallback()
            LOGGER.warning("Falling back to summary generator: %s", exc)
            answer = await self._fallback.generate(question=question, context=context, orders=orders)
            return GeneratedAnswer(text=answer.text, model=answer.model, fallback=True)

    def _build_messages(self, *, question: str, context: str) -> list[dict[str, str]]:
        system_context = SYSTEM_PROMPT
        if context:
            system_context += f"\n\nOrder data:\n{context}"
        return [
            {"role": "system", "content": system_context},
            {"role": "user", "content": question},
        ]


def build_generator(settings) -> OpenAIGenerator:
    api_key = settings.require_llm_credentials() if settings.use_llm else settings.llm_api_key
    return OpenAIGenerator(
        GenerationConfig(
            model=settings.llm_model,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
            timeout_seconds=settings.llm_timeout_seconds,
            use_model=settings.use_llm,
            api_key=api_key,
            base_url=settings.llm_base_url,
        ),
        fallback=SummaryGenerator(),
    )
