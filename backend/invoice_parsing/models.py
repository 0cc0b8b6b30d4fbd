"""
Invoice Parsing Data Model
Parsed invoices, per-attempt results and the orchestrator's final outcome
"""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class LineItem:
    """One line of an invoice"""

    description: str
    total: float
    quantity: float | None = None
    unit_price: float | None = None
    category: str | None = None  # e.g., "MATERIAL", "LABOR", "EQUIPMENT"


@dataclass(frozen=True)
class ParsedInvoice:
    """Structured invoice extracted from text"""

    invoice_number: str | None = None
    date: str | None = None  # YYYY-MM-DD
    vendor_name: str | None = None
    description: str | None = None
    amount: float | None = None  # Subtotal before tax
    tax: float | None = None
    total: float | None = None
    line_items: tuple[LineItem, ...] = ()
    page_number: int | None = None
    confidence: float = 0.0
    reasoning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["line_items"] = [asdict(item) for item in self.line_items]
        return data


@dataclass(frozen=True)
class ParseOptions:
    """Caller-supplied options for a single parse"""

    expected_format: str | None = None  # e.g., "nz-tax-invoice", "construction-invoice"
    strategy_override: str | None = None
    supplier_name: str | None = None
    project_context: str | None = None
    timeout_seconds: float | None = None
    document_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ParseOptions":
        data = data or {}
        timeout = data.get("timeout_seconds")
        return cls(
            expected_format=data.get("expected_format"),
            strategy_override=data.get("strategy_override"),
            supplier_name=data.get("supplier_name"),
            project_context=data.get("project_context"),
            timeout_seconds=float(timeout) if timeout is not None else None,
            document_id=data.get("document_id"),
        )


@dataclass(frozen=True)
class ParseAttemptResult:
    """One provider's outcome for one input"""

    provider_id: str
    success: bool
    confidence: float = 0.0
    extracted_fields: ParsedInvoice | None = None
    cost: float = 0.0
    duration_ms: float = 0.0
    error: str | None = None
    error_type: str | None = None

    @property
    def usable(self) -> bool:
        return self.success and self.extracted_fields is not None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "provider_id": self.provider_id,
            "success": self.success,
            "confidence": self.confidence,
            "cost": self.cost,
            "duration_ms": round(self.duration_ms, 2),
        }
        if self.error:
            data["error"] = self.error
            data["error_type"] = self.error_type
        return data


@dataclass
class OutcomeMetadata:
    """Which kinds of parsers a run touched"""

    llm_used: bool = False
    fallback_triggered: bool = False
    traditional_used: bool = False


@dataclass
class ParsingOutcome:
    """The orchestrator's final answer for one document.

    ``total_cost`` is always the sum of the attempt costs.
    """

    success: bool
    strategy: str
    confidence: float = 0.0
    attempts: list[ParseAttemptResult] = field(default_factory=list)
    best_result: ParsedInvoice | None = None
    best_effort: bool = False
    cancelled: bool = False
    skipped: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None
    processing_time_ms: float = 0.0
    review_status: str | None = None
    metadata: OutcomeMetadata = field(default_factory=OutcomeMetadata)

    @property
    def total_cost(self) -> float:
        return round(sum(attempt.cost for attempt in self.attempts), 6)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "confidence": self.confidence,
            "total_cost": self.total_cost,
            "strategy": self.strategy,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "best_result": self.best_result.to_dict() if self.best_result else None,
            "best_effort": self.best_effort,
            "cancelled": self.cancelled,
            "skipped": list(self.skipped),
            "error": self.error,
            "processing_time_ms": round(self.processing_time_ms, 2),
            "review_status": self.review_status,
            "metadata": asdict(self.metadata),
        }
