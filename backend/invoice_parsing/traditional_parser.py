"""
Traditional Invoice Parser

Regex extraction of invoice fields from plain text. Free and offline, so it
sits in every strategy's fallback chain; confidence comes from
ExtractionConfidenceScorer rather than from the patterns themselves.
"""

import re
from dataclasses import replace
from datetime import datetime
from typing import Optional

from invoice_parsing.confidence import ConfidenceScorer, ExtractionConfidenceScorer
from invoice_parsing.models import LineItem, ParsedInvoice

CURRENCY = r"(?:NZ\$|A\$|\$|AUD|NZD|USD)?"
MONEY = r"([\d,]+\.?\d*)"

INVOICE_NUMBER_PATTERNS = [
    re.compile(r"invoice\s*#:?\s*([A-Z0-9\-_]+)", re.I),
    re.compile(r"invoice\s*(?:number|no\.?):?\s*([A-Z0-9\-_]+)", re.I),
    re.compile(r"\binv\.?\s*(?:#|number|no\.?)?:?\s*([A-Z0-9\-_]*\d[A-Z0-9\-_]*)", re.I),
    re.compile(r"\b(?:reference|ref)\s*(?:#|number|no\.?)?:?\s*([A-Z0-9\-_]*\d[A-Z0-9\-_]*)", re.I),
]

DATE_LABEL = r"(?:invoice\s*date|date|dated)"
DATE_PATTERNS = [
    # YYYY-MM-DD
    re.compile(DATE_LABEL + r":?\s*(\d{4}[-/]\d{1,2}[-/]\d{1,2})", re.I),
    # DD/MM/YYYY
    re.compile(DATE_LABEL + r":?\s*(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{4})", re.I),
    # Jan 15, 2024
    re.compile(DATE_LABEL + r":?\s*([A-Za-z]{3,9}\s+\d{1,2},?\s+\d{4})", re.I),
    # 15-Jan-2024 or 15 January 2024
    re.compile(DATE_LABEL + r":?\s*(\d{1,2}[-\s][A-Za-z]{3,9}[-\s]\d{4})", re.I),
]

VENDOR_PATTERNS = [
    re.compile(r"^\s*(?:from|vendor|supplier|company|issued\s*by)\b:?\s*([^\n\r]+)", re.I | re.M),
    re.compile(
        r"^[ \t]*([A-Za-z][A-Za-z &.\-]+? (?:Ltd|Limited|Inc|Corp|Corporation|Co\.?|Pty|Company))\b",
        re.M,
    ),
]

DESCRIPTION_PATTERNS = [
    re.compile(r"^\s*(?:description|work\s*performed|services?|details?)\b:?\s*([^\n\r]+)", re.I | re.M),
    re.compile(r"^\s*(?:for|re)\b:?\s*([^\n\r]{10,})", re.I | re.M),
]

SUBTOTAL_PATTERNS = [
    re.compile(r"(?:subtotal|sub[-\s]total):?\s*" + CURRENCY + r"\s*" + MONEY, re.I),
    re.compile(r"net\s*amount:?\s*" + CURRENCY + r"\s*" + MONEY, re.I),
    re.compile(r"^\s*amount:?\s*" + CURRENCY + r"\s*" + MONEY, re.I | re.M),
]

TAX_PATTERNS = [
    re.compile(r"\b(?:tax|gst|vat)(?:\s*\(\d+(?:\.\d+)?%\))?:?\s*" + CURRENCY + r"\s*" + MONEY, re.I),
    re.compile(r"\b(?:gst|tax|vat)\s*@?\s*\d+(?:\.\d+)?%:?\s*" + CURRENCY + r"\s*" + MONEY, re.I),
]

TOTAL_PATTERNS = [
    re.compile(r"(?:total\s+amount|grand\s*total|amount\s*due|total\s+due):?\s*" + CURRENCY + r"\s*" + MONEY, re.I),
    re.compile(r"^\s*total(?:\s*\(incl\.?\s*(?:gst|tax)\))?:?\s*" + CURRENCY + r"\s*" + MONEY, re.I | re.M),
    re.compile(r"balance\s*due:?\s*" + CURRENCY + r"\s*" + MONEY, re.I),
]

LINE_ITEM_PATTERNS = [
    # Item 1: Description - Qty: X - $Y.YY each - $Z.ZZ
    re.compile(
        r"item\s*\d*:?\s*([^\-\n]+?)\s*-\s*qty:?\s*(\d+(?:\.\d+)?)\s*-\s*\$?([\d,]+\.?\d*)"
        r"\s*(?:each|per|/\w+)?\s*-\s*\$?([\d,]+\.?\d*)",
        re.I,
    ),
    # Description - X hours - $Y.YY/hour - $Z.ZZ
    re.compile(
        r"^\s*([^\-\n]+?)\s*-\s*(\d+(?:\.\d+)?)\s*(?:units?|hours?|hrs?|days?|m2|m3|lm)\s*-\s*\$?([\d,]+\.?\d*)"
        r"\s*(?:/\w+|each|per)?\s*-\s*\$?([\d,]+\.?\d*)",
        re.I | re.M,
    ),
]

ITEM_PREFIX = re.compile(r"^item\s*\d*:\s*", re.I)


def _first_match(patterns, text: str) -> Optional[str]:
    for pattern in patterns:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1).strip()
    return None


def _to_amount(value: str) -> Optional[float]:
    try:
        amount = float(value.replace(",", ""))
    except ValueError:
        return None
    return round(amount, 2)


def extract_invoice_number(text: str) -> Optional[str]:
    return _first_match(INVOICE_NUMBER_PATTERNS, text)


def normalize_date(date_str: str) -> Optional[str]:
    """Normalize a date to YYYY-MM-DD. Numeric dates are read as DD/MM/YYYY."""
    date_str = date_str.strip()

    match = re.fullmatch(r"(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})", date_str)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return datetime(year, month, day).strftime("%Y-%m-%d")
        except ValueError:
            return None

    cleaned = re.sub(r"[,\-]", " ", date_str)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    for fmt in ("%Y %m %d", "%b %d %Y", "%B %d %Y", "%d %b %Y", "%d %B %Y"):
        try:
            return datetime.strptime(cleaned.replace("/", " "), fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return None


def extract_date(text: str) -> Optional[str]:
    for pattern in DATE_PATTERNS:
        match = pattern.search(text)
        if match:
            normalized = normalize_date(match.group(1))
            if normalized:
                return normalized
    return None


def extract_vendor_name(text: str) -> Optional[str]:
    for pattern in VENDOR_PATTERNS:
        match = pattern.search(text)
        if match:
            vendor = match.group(1).strip()
            # Filter out common false positives
            if not vendor.isdigit() and 2 < len(vendor) < 100:
                return vendor
    return None


def extract_description(text: str) -> Optional[str]:
    for pattern in DESCRIPTION_PATTERNS:
        match = pattern.search(text)
        if match:
            desc = match.group(1).strip()
            if 5 < len(desc) < 200:
                return desc
    return None


def _extract_money(patterns, text: str) -> Optional[float]:
    value = _first_match(patterns, text)
    return _to_amount(value) if value else None


def extract_amount(text: str) -> Optional[float]:
    return _extract_money(SUBTOTAL_PATTERNS, text)


def extract_tax(text: str) -> Optional[float]:
    return _extract_money(TAX_PATTERNS, text)


def extract_total(text: str) -> Optional[float]:
    return _extract_money(TOTAL_PATTERNS, text)


def extract_line_items(text: str) -> list[LineItem]:
    items = []
    seen_spans = []

    for pattern in LINE_ITEM_PATTERNS:
        for match in pattern.finditer(text):
            # Skip lines already captured by an earlier pattern
            if any(start < match.end() and match.start() < end for start, end in seen_spans):
                continue

            description = ITEM_PREFIX.sub("", match.group(1).strip())
            quantity = _to_amount(match.group(2))
            unit_price = _to_amount(match.group(3))
            total = _to_amount(match.group(4))

            if description and quantity is not None and unit_price is not None and total:
                items.append(
                    LineItem(
                        description=description,
                        quantity=quantity,
                        unit_price=unit_price,
                        total=total,
                    )
                )
                seen_spans.append(match.span())

    return items


def parse_invoice_text(
    text: str,
    page_number: int = 1,
    scorer: Optional[ConfidenceScorer] = None,
) -> ParsedInvoice:
    """
    Extract invoice fields from text with regular expressions.

    Args:
        text: Extracted invoice text
        page_number: Page the text came from
        scorer: Confidence scorer (default: ExtractionConfidenceScorer)

    Returns:
        ParsedInvoice with a heuristic confidence
    """
    scorer = scorer or ExtractionConfidenceScorer()

    invoice = ParsedInvoice(
        invoice_number=extract_invoice_number(text),
        date=extract_date(text),
        vendor_name=extract_vendor_name(text),
        description=extract_description(text),
        amount=extract_amount(text),
        tax=extract_tax(text),
        total=extract_total(text),
        line_items=tuple(extract_line_items(text)),
        page_number=page_number,
        reasoning="regex extraction",
    )

    return replace(invoice, confidence=scorer.score(invoice))
