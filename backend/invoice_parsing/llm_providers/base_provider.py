"""
Shared base for invoice-extraction LLM clients

Subclasses supply transport (complete), pricing and account lookups; prompt
building and response normalization live here.
"""

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from invoice_parsing.models import LineItem, ParsedInvoice


@dataclass
class AccountInfo:
    """Billing snapshot reported by a provider, if it exposes one"""

    provider: str
    available: bool
    balance: float | None = None
    subscription_tier: str | None = None
    usage_this_month: float | None = None  # USD, month to date
    error: str | None = None
    extra: dict[str, Any] | None = None


@dataclass
class LLMResponse:
    """Text and token accounting from one completion call"""

    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0  # USD


# Amounts further apart than this are treated as inconsistent totals
TOTALS_TOLERANCE = 0.50

DEFAULT_LLM_CONFIDENCE = 0.8

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%B %d %Y",
)


@dataclass(frozen=True)
class ModelPricing:
    """USD per 1k tokens for one model family"""

    input_per_1k: float
    output_per_1k: float


class BaseLLMProvider(ABC):
    """One configured model on one provider account"""

    # Output cap sent with every extraction request; also the upper bound
    # used for pre-attempt cost estimates
    MAX_OUTPUT_TOKENS = 2048

    # Model-name fragment -> pricing; first match wins
    PRICING: dict[str, ModelPricing] = {}
    DEFAULT_PRICING = ModelPricing(0.0, 0.0)

    def __init__(self, api_key: str | None, model: str, timeout: int = 30):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @abstractmethod
    def validate_api_key(self) -> bool:
        """True when the credentials can reach the configured model."""

    def pricing(self) -> ModelPricing:
        model = self.model.lower()
        for fragment, pricing in self.PRICING.items():
            if fragment in model:
                return pricing
        return self.DEFAULT_PRICING

    def calculate_cost(self, tokens_in: int, tokens_out: int) -> float:
        """
        Cost of a request in USD, from the model's per-1k token pricing.

        Args:
            tokens_in: Prompt tokens
            tokens_out: Completion tokens
        """
        pricing = self.pricing()
        cost = (tokens_in / 1000) * pricing.input_per_1k + (
            tokens_out / 1000
        ) * pricing.output_per_1k
        return round(cost, 6)

    @abstractmethod
    def get_account_info(self) -> AccountInfo:
        """Billing status, or available=False where the provider has no such API."""

    @abstractmethod
    def complete(self, prompt: str, system_prompt: str = None) -> LLMResponse:
        """
        Send one prompt and return the raw text with token usage and cost.

        Transport errors propagate; adapters decide which are recoverable.
        """

    def close(self) -> None:
        """Close the underlying HTTP client, aborting any in-flight request."""

    # ========================================================================
    # Invoice extraction
    # ========================================================================

    def estimate_cost(self, text: str, page_count: int = 1) -> float:
        """Upper-bound cost of one extraction call for ``text``."""
        prompt = self.build_invoice_prompt(text, page_count, {})
        return self.calculate_cost(
            self._estimate_tokens(prompt), self.MAX_OUTPUT_TOKENS
        )

    def build_invoice_prompt(
        self, text: str, page_number: int, context: dict[str, str | None]
    ) -> str:
        """
        Build the extraction prompt for a construction invoice.

        Args:
            text: Invoice text
            page_number: Page number shown to the model
            context: supplier_name, expected_format and project_context hints

        Returns:
            Prompt string
        """
        context_lines = []
        if context.get("supplier_name"):
            context_lines.append(f"Expected Supplier: {context['supplier_name']}")
        if context.get("expected_format"):
            context_lines.append(f"Format Type: {context['expected_format']}")
        if context.get("project_context"):
            context_lines.append(f"Project Context: {context['project_context']}")

        return f"""You are an expert invoice data extraction system for construction projects. Extract structured data from the following invoice text with high accuracy.

INVOICE TEXT (Page {page_number or 1}):
{text}

EXTRACTION REQUIREMENTS:
1. Invoice Number: Exact invoice/reference number
2. Vendor Name: Company name issuing the invoice
3. Date: Invoice date in YYYY-MM-DD format
4. Amounts: subtotal before tax, tax/GST amount, total including tax
5. Line Items: Individual items/services with quantities and prices
6. Description: Brief description of work/materials

CONTEXT:
{chr(10).join(context_lines)}

RESPONSE FORMAT (JSON):
{{
  "invoiceNumber": "string",
  "vendorName": "string",
  "date": "YYYY-MM-DD",
  "description": "string",
  "amount": number,
  "tax": number,
  "total": number,
  "lineItems": [
    {{"description": "string", "quantity": number, "unitPrice": number, "total": number}}
  ],
  "confidence": number,
  "reasoning": "brief explanation of extraction decisions"
}}

VALIDATION RULES:
- All currency amounts should be numbers (not strings)
- Dates must be valid YYYY-MM-DD format
- Total should equal amount + tax (within $0.50 tolerance)
- Confidence should reflect extraction certainty (0.0-1.0)
- If unsure about a field, use null and lower confidence

Return ONLY valid JSON."""

    def parse_invoice_response(
        self, response_text: str, page_number: int = 1
    ) -> ParsedInvoice:
        """
        Parse and normalize the model's JSON answer.

        Args:
            response_text: Raw response from LLM
            page_number: Page the invoice came from

        Returns:
            Normalized ParsedInvoice
        """
        data = self._extract_json(response_text)
        if not isinstance(data, dict):
            raise json.JSONDecodeError("Expected a JSON object", response_text, 0)

        amount = self._normalize_amount(data.get("amount"))
        tax = self._normalize_amount(data.get("tax"))
        total = self._normalize_amount(data.get("total"))

        confidence = self._normalize_amount(data.get("confidence"))
        if confidence is None:
            confidence = DEFAULT_LLM_CONFIDENCE
        confidence = min(max(confidence, 0.0), 1.0)

        # Down-weight answers whose totals don't add up
        if amount is not None and tax is not None and total is not None:
            if abs(total - (amount + tax)) > TOTALS_TOLERANCE:
                confidence = max(confidence * 0.8, 0.3)

        return ParsedInvoice(
            invoice_number=self._clean_str(data.get("invoiceNumber")),
            date=self._normalize_date(data.get("date")),
            vendor_name=self._clean_str(data.get("vendorName")),
            description=self._clean_str(data.get("description")),
            amount=amount,
            tax=tax,
            total=total,
            line_items=self._normalize_line_items(data.get("lineItems")),
            page_number=page_number,
            confidence=round(confidence, 4),
            reasoning=self._clean_str(data.get("reasoning")),
        )

    @staticmethod
    def _extract_json(response_text: str) -> Any:
        """Load JSON directly, falling back to the outermost {...} block."""
        try:
            return json.loads(response_text)
        except json.JSONDecodeError:
            match = re.search(r"\{[\s\S]*\}", response_text or "")
            if not match:
                raise
            return json.loads(match.group(0))

    @staticmethod
    def _clean_str(value: Any) -> str | None:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @staticmethod
    def _normalize_date(value: Any) -> str | None:
        """Normalize a date string to YYYY-MM-DD, or None if unparseable."""
        if not value:
            return None
        value = str(value).strip()
        try:
            return datetime.fromisoformat(value).strftime("%Y-%m-%d")
        except ValueError:
            pass
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(value, fmt).strftime("%Y-%m-%d")
            except ValueError:
                continue
        return None

    @staticmethod
    def _normalize_amount(value: Any) -> float | None:
        """Coerce a number or currency string to a 2dp float."""
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, str):
            value = re.sub(r"[^0-9.\-]", "", value)
            if not value:
                return None
        try:
            return round(float(value), 2)
        except (TypeError, ValueError):
            return None

    @classmethod
    def _normalize_line_items(cls, items: Any) -> tuple[LineItem, ...]:
        if not isinstance(items, list):
            return ()

        normalized = []
        for item in items:
            if not isinstance(item, dict):
                continue
            description = cls._clean_str(item.get("description"))
            total = cls._normalize_amount(item.get("total")) or 0.0
            # Drop lines with no description or no positive total
            if not description or total <= 0:
                continue
            normalized.append(
                LineItem(
                    description=description,
                    quantity=cls._normalize_amount(item.get("quantity")) or 1.0,
                    unit_price=cls._normalize_amount(item.get("unitPrice")) or 0.0,
                    total=total,
                )
            )
        return tuple(normalized)

    @staticmethod
    def _estimate_tokens(text: str) -> int:
        # ~4 characters per token
        return max(1, len(text) // 4)
