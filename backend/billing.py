"""
TaskLedger — Billing Computation Engine

Turns tasks into billable amounts and groups them into payable reports.

- All money is integer cents; arithmetic goes through ``fractions.Fraction``
  so no float ever touches an amount.
- Hourly work is measured from the task schedule (start/end date + "HH:MM")
  when present, else from the stored ``hours``; hours are rounded half-up to
  0.01 h before pricing, so the printed hours times the rate is the amount.
- Reports never add different currencies together.
"""

import os
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time
from decimal import Decimal
from fractions import Fraction
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from logging_system import get_logger, LogCategory, TimedOperation
from models import PricingType

logger = get_logger()

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "PHP").upper()
UNKNOWN_PROJECT_NAME = "Unknown Project"
FIXED_HOURS_LABEL = "Fixed"

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")


class ComputationError(ValueError):
    """Task data that cannot be priced (negative money, bad schedule, unknown pricing)."""


# ============================================================
# ARITHMETIC HELPERS
# ============================================================

def round_half_up(value: Fraction) -> int:
    """Round a non-negative fraction to the nearest integer, halves up."""
    whole, remainder = divmod(value.numerator, value.denominator)
    return whole + (1 if 2 * remainder >= value.denominator else 0)


def _to_fraction(value: Any, field_name: str) -> Fraction:
    if isinstance(value, bool):
        raise ComputationError(f"{field_name} must be a number")
    if isinstance(value, (int, Fraction)):
        result = Fraction(value)
    elif isinstance(value, Decimal):
        result = Fraction(value)
    elif isinstance(value, (float, str)):
        try:
            result = Fraction(Decimal(str(value)))
        except (ArithmeticError, ValueError):
            raise ComputationError(f"{field_name} is not a number: {value!r}")
    else:
        raise ComputationError(f"{field_name} is not a number: {value!r}")
    if result < 0:
        raise ComputationError(f"{field_name} cannot be negative")
    return result


def _money(value: Any, field_name: str) -> Optional[int]:
    if value is None:
        return None
    amount = _to_fraction(value, field_name)
    if amount.denominator != 1:
        raise ComputationError(f"{field_name} must be whole cents")
    return int(amount)


def _hundredths_to_decimal(hundredths: int) -> Decimal:
    return Decimal(hundredths).scaleb(-2)


# ============================================================
# SCHEDULE PARSING
# ============================================================

def parse_clock(value: Optional[str], field_name: str) -> dt_time:
    """Parse "HH:MM" (seconds optional); empty means midnight."""
    if value is None or value == "":
        return dt_time(0, 0)
    match = _TIME_RE.match(str(value).strip())
    if not match:
        raise ComputationError(f"{field_name} must look like HH:MM, got {value!r}")
    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3) or 0)
    if hour > 23 or minute > 59 or second > 59:
        raise ComputationError(f"{field_name} is out of range: {value!r}")
    return dt_time(hour, minute, second)


def _as_date(value: Any, field_name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ComputationError(f"{field_name} is not a date: {value!r}")


def scheduled_seconds(task: Any) -> Optional[int]:
    """Seconds between the task's start and end, or None without both dates."""
    start_date = getattr(task, "start_date", None)
    end_date = getattr(task, "end_date", None)
    if start_date is None or end_date is None:
        return None
    start = datetime.combine(_as_date(start_date, "start_date"),
                             parse_clock(getattr(task, "start_time", None), "start_time"))
    end = datetime.combine(_as_date(end_date, "end_date"),
                           parse_clock(getattr(task, "end_time", None), "end_time"))
    seconds = int((end - start).total_seconds())
    if seconds < 0:
        logger.warning(
            "Task ends before it starts; billing zero hours",
            category=LogCategory.BILLING,
            metadata={"task_id": getattr(task, "id", None), "start": start.isoformat(), "end": end.isoformat()},
        )
        return 0
    return seconds


def billable_hundredths(task: Any) -> int:
    """Billable duration in hundredths of an hour, rounded half-up."""
    seconds = scheduled_seconds(task)
    if seconds is not None:
        return round_half_up(Fraction(seconds, 36))
    stored = getattr(task, "hours", None)
    if stored is None:
        return 0
    return round_half_up(_to_fraction(stored, "hours") * 100)


# ============================================================
# TASK AMOUNT
# ============================================================

def _pricing_type(task: Any) -> PricingType:
    raw = getattr(task, "pricing_type", None) or PricingType.HOURLY
    try:
        return PricingType(raw)
    except ValueError:
        raise ComputationError(f"Unknown pricing type: {raw!r}")


def task_currency(task: Any) -> str:
    raw = getattr(task, "currency", None) or DEFAULT_CURRENCY
    return str(getattr(raw, "value", raw)).upper()


@dataclass(frozen=True)
class TaskAmount:
    amount_cents: int
    currency: str
    hours: Union[Decimal, str]
    pricing_type: PricingType
    rate_cents: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "hours": self.hours if isinstance(self.hours, str) else float(self.hours),
            "pricing_type": self.pricing_type.value,
            "rate_cents": self.rate_cents,
        }


def compute_task_amount(task: Any) -> TaskAmount:
    """Billable amount of one task in integer cents."""
    pricing = _pricing_type(task)
    currency = task_currency(task)

    if pricing == PricingType.FIXED:
        price = _money(getattr(task, "fixed_price", None), "fixed_price")
        return TaskAmount(
            amount_cents=price or 0,
            currency=currency,
            hours=FIXED_HOURS_LABEL,
            pricing_type=pricing,
            rate_cents=price,
        )

    rate = _money(getattr(task, "hourly_rate", None), "hourly_rate")
    hundredths = billable_hundredths(task)
    amount = 0 if rate is None else round_half_up(Fraction(hundredths, 100) * rate)
    return TaskAmount(
        amount_cents=amount,
        currency=currency,
        hours=_hundredths_to_decimal(hundredths),
        pricing_type=pricing,
        rate_cents=rate,
    )


# ============================================================
# PAYABLE REPORT
# ============================================================

@dataclass
class InvoiceLine:
    task_id: Optional[str]
    title: str
    status: Optional[str]
    amount: TaskAmount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "title": self.title,
            "status": self.status,
            **self.amount.to_dict(),
        }


@dataclass
class InvoiceGroup:
    project_id: Optional[str]
    project_name: str
    currency: str
    lines: List[InvoiceLine] = field(default_factory=list)

    @property
    def subtotal_cents(self) -> int:
        return sum(line.amount.amount_cents for line in self.lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "project_name": self.project_name,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "tasks": [line.to_dict() for line in self.lines],
        }


@dataclass
class InvoiceReport:
    groups: List[InvoiceGroup]
    totals_by_currency: Dict[str, int]
    grand_total_cents: Optional[int]
    excluded_task_ids: List[str] = field(default_factory=list)
    currency: Optional[str] = None

    @property
    def task_count(self) -> int:
        return sum(len(g.lines) for g in self.groups)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "groups": [g.to_dict() for g in self.groups],
            "totals_by_currency": dict(self.totals_by_currency),
            "grand_total_cents": self.grand_total_cents,
            "excluded_task_ids": list(self.excluded_task_ids),
            "currency": self.currency,
            "task_count": self.task_count,
        }


def _status_value(task: Any) -> Optional[str]:
    status = getattr(task, "status", None)
    return getattr(status, "value", status)


def build_invoice_report(
    tasks: Iterable[Any],
    project_names: Optional[Mapping[str, str]] = None,
    currency: Optional[str] = None,
) -> InvoiceReport:
    """
    Group tasks by project (and currency) into a payable report.

    Tasks whose project is unknown land in a single "Unknown Project" group.
    With ``currency`` set, tasks in other currencies are left out and listed
    in ``excluded_task_ids``.  ``grand_total_cents`` is None when the report
    holds more than one currency.
    """
    names = project_names or {}
    only = currency.upper() if currency else None
    groups: Dict[Tuple[Optional[str], str], InvoiceGroup] = {}
    excluded: List[str] = []

    with TimedOperation(logger, "build_invoice_report", category=LogCategory.BILLING):
        for task in tasks:
            amount = compute_task_amount(task)
            if only and amount.currency != only:
                excluded.append(getattr(task, "id", None))
                continue

            project_id = getattr(task, "project_id", None)
            name = names.get(project_id) if project_id is not None else None
            if name is None:
                name = getattr(task, "project_name", None)
            if name is None:
                project_id, name = None, UNKNOWN_PROJECT_NAME

            key = (project_id, amount.currency)
            group = groups.get(key)
            if group is None:
                group = groups[key] = InvoiceGroup(project_id, name, amount.currency)
            group.lines.append(InvoiceLine(
                task_id=getattr(task, "id", None),
                title=getattr(task, "title", "") or "",
                status=_status_value(task),
                amount=amount,
            ))

        ordered = sorted(
            groups.values(),
            key=lambda g: (g.project_name.casefold(), g.project_id or "", g.currency),
        )
        totals: Dict[str, int] = {}
        for group in ordered:
            totals[group.currency] = totals.get(group.currency, 0) + group.subtotal_cents

    if len(totals) > 1:
        grand_total = None
    else:
        grand_total = sum(totals.values())

    logger.info(
        "Payable report built",
        category=LogCategory.BILLING,
        metadata={
            "groups": len(ordered),
            "totals_by_currency": totals,
            "excluded": len(excluded),
        },
    )
    return InvoiceReport(
        groups=ordered,
        totals_by_currency=totals,
        grand_total_cents=grand_total,
        excluded_task_ids=excluded,
        currency=only,
    )


# ============================================================
# INVOICE PARTIES
# ============================================================

@dataclass
class InvoiceParty:
    """Structured billing party; the rendered text block is derived from it."""
    org_name: str = ""
    name: str = ""
    address: str = ""
    email: str = ""
    phone: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "org_name": self.org_name,
            "name": self.name,
            "address": self.address,
            "email": self.email,
            "phone": self.phone,
            "text": render_party(self),
        }


@dataclass
class InvoiceDetails:
    bill_from: InvoiceParty = field(default_factory=InvoiceParty)
    bill_to: InvoiceParty = field(default_factory=InvoiceParty)
    payment_terms: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bill_from": self.bill_from.to_dict(),
            "bill_to": self.bill_to.to_dict(),
            "payment_terms": self.payment_terms,
        }


def render_party(party: InvoiceParty) -> str:
    parts = [party.org_name, party.name, party.address, party.email, party.phone]
    return "\n".join(p.strip() for p in parts if p and p.strip())


def _normalise_block(text: str) -> str:
    lines = (" ".join(line.split()) for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def reconcile_party_text(party: InvoiceParty, free_text: Optional[str]) -> Tuple[str, bool]:
    """
    Rendered text for ``party`` and whether ``free_text`` disagreed with it.

    The structured fields win; a differing free-text block is reported, not
    merged.
    """
    rendered = render_party(party)
    if free_text is None:
        return rendered, False
    diverged = _normalise_block(free_text) != _normalise_block(rendered)
    if diverged:
        logger.info(
            "Invoice party text differs from structured fields",
            category=LogCategory.BILLING,
            metadata={"party": party.org_name or party.name},
        )
    return rendered, diverged
