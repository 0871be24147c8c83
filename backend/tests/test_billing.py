"""Tests for the billing computation engine."""
from datetime import date
from decimal import Decimal
from fractions import Fraction
from types import SimpleNamespace

import pytest

from billing import (
    compute_task_amount, build_invoice_report, billable_hundredths, round_half_up,
    parse_clock, reconcile_party_text, render_party,
    InvoiceParty, ComputationError, UNKNOWN_PROJECT_NAME,
)
from models import PricingType


def make_task(**overrides):
    fields = dict(
        id="t-1",
        project_id="p-1",
        title="Task",
        status="todo",
        pricing_type="hourly",
        currency="PHP",
        hourly_rate=None,
        fixed_price=None,
        hours=None,
        start_date=None,
        start_time=None,
        end_date=None,
        end_time=None,
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


# ============================================================
# TASK AMOUNT
# ============================================================

def test_hourly_two_and_a_half_hours():
    task = make_task(hours=Decimal("2.5"), hourly_rate=10000)
    for _ in range(50):
        amount = compute_task_amount(task)
        assert amount.amount_cents == 25000
    assert amount.hours == Decimal("2.50")
    assert amount.currency == "PHP"


def test_hourly_from_schedule():
    task = make_task(
        hourly_rate=5000,
        start_date=date(2026, 3, 2), start_time="09:00",
        end_date=date(2026, 3, 2), end_time="12:00",
        hours=Decimal("99"),
    )
    amount = compute_task_amount(task)
    assert amount.hours == Decimal("3.00")
    assert amount.amount_cents == 15000


def test_schedule_across_midnight():
    task = make_task(
        hourly_rate=1000,
        start_date=date(2026, 3, 2), start_time="22:30",
        end_date=date(2026, 3, 3), end_time="01:00",
    )
    assert compute_task_amount(task).amount_cents == 2500


def test_schedule_hours_round_half_up_to_hundredths():
    # 20 minutes is 0.3333 h, billed as 0.33 h
    task = make_task(
        hourly_rate=10000,
        start_date=date(2026, 1, 1), start_time="10:00",
        end_date=date(2026, 1, 1), end_time="10:20",
    )
    assert billable_hundredths(task) == 33
    assert compute_task_amount(task).amount_cents == 3300


def test_end_before_start_bills_zero():
    task = make_task(
        hourly_rate=10000,
        start_date=date(2026, 1, 2), start_time="10:00",
        end_date=date(2026, 1, 1), end_time="10:00",
    )
    amount = compute_task_amount(task)
    assert amount.amount_cents == 0
    assert amount.hours == Decimal("0.00")


def test_fixed_price_ignores_hours():
    task = make_task(pricing_type=PricingType.FIXED, fixed_price=150000, hours=Decimal("40"), hourly_rate=999)
    amount = compute_task_amount(task)
    assert amount.amount_cents == 150000
    assert amount.hours == "Fixed"
    assert amount.to_dict()["hours"] == "Fixed"


def test_no_rate_is_zero_not_error():
    assert compute_task_amount(make_task(hours=Decimal("3"))).amount_cents == 0
    assert compute_task_amount(make_task(pricing_type="fixed")).amount_cents == 0


def test_no_duration_is_zero():
    assert compute_task_amount(make_task(hourly_rate=5000)).amount_cents == 0


@pytest.mark.parametrize("overrides", [
    {"hourly_rate": -100, "hours": Decimal("1")},
    {"pricing_type": "fixed", "fixed_price": -1},
    {"hourly_rate": 100, "hours": Decimal("-2")},
    {"pricing_type": "retainer"},
    {"hourly_rate": 100, "start_date": date(2026, 1, 1), "end_date": date(2026, 1, 1), "end_time": "25:00"},
])
def test_malformed_input_raises(overrides):
    with pytest.raises(ComputationError):
        compute_task_amount(make_task(**overrides))


def test_currency_enum_value_is_used():
    task = make_task(currency=SimpleNamespace(value="usd"), hours=Decimal("1"), hourly_rate=100)
    assert compute_task_amount(task).currency == "USD"


def test_round_half_up():
    assert round_half_up(Fraction(5, 2)) == 3
    assert round_half_up(Fraction(249, 100)) == 2
    assert round_half_up(Fraction(1, 2)) == 1
    assert round_half_up(Fraction(0)) == 0


def test_parse_clock_accepts_seconds_and_blank():
    assert parse_clock("7:05", "t").hour == 7
    assert parse_clock("07:05:30", "t").second == 30
    assert parse_clock("", "t").hour == 0
    with pytest.raises(ComputationError):
        parse_clock("noon", "t")


# ============================================================
# INVOICE REPORT
# ============================================================

def test_report_alpha_before_zeta():
    tasks = [
        make_task(id="z", project_id="p-z", pricing_type="fixed", fixed_price=20000),
        make_task(id="a", project_id="p-a", hours=Decimal("3"), hourly_rate=5000),
    ]
    report = build_invoice_report(tasks, {"p-a": "Alpha", "p-z": "Zeta"})

    assert [g.project_name for g in report.groups] == ["Alpha", "Zeta"]
    assert [g.subtotal_cents for g in report.groups] == [15000, 20000]
    assert report.grand_total_cents == 35000


def test_report_ordering_is_case_insensitive():
    tasks = [
        make_task(id="1", project_id="p-1"),
        make_task(id="2", project_id="p-2"),
        make_task(id="3", project_id="p-3"),
    ]
    report = build_invoice_report(tasks, {"p-1": "zebra", "p-2": "Apple", "p-3": "banana"})
    assert [g.project_name for g in report.groups] == ["Apple", "banana", "zebra"]


def test_unknown_project_group():
    tasks = [
        make_task(id="1", project_id="missing", pricing_type="fixed", fixed_price=100),
        make_task(id="2", project_id=None, pricing_type="fixed", fixed_price=200),
    ]
    report = build_invoice_report(tasks, {})
    assert len(report.groups) == 1
    group = report.groups[0]
    assert group.project_name == UNKNOWN_PROJECT_NAME
    assert group.project_id is None
    assert group.subtotal_cents == 300


def test_project_name_attribute_fallback():
    task = make_task(project_id="p-9", project_name="Loaded Name", pricing_type="fixed", fixed_price=1)
    report = build_invoice_report([task])
    assert report.groups[0].project_name == "Loaded Name"


def test_task_order_preserved_within_group():
    tasks = [make_task(id=str(i), title=f"T{i}", pricing_type="fixed", fixed_price=i) for i in (3, 1, 2)]
    report = build_invoice_report(tasks, {"p-1": "Only"})
    assert [line.task_id for line in report.groups[0].lines] == ["3", "1", "2"]


def test_mixed_currencies_are_never_summed():
    tasks = [
        make_task(id="1", currency="PHP", pricing_type="fixed", fixed_price=1000),
        make_task(id="2", currency="USD", pricing_type="fixed", fixed_price=50),
        make_task(id="3", currency="PHP", pricing_type="fixed", fixed_price=500),
    ]
    report = build_invoice_report(tasks, {"p-1": "Shared"})

    assert report.totals_by_currency == {"PHP": 1500, "USD": 50}
    assert report.grand_total_cents is None
    assert {g.currency for g in report.groups} == {"PHP", "USD"}


def test_explicit_currency_lists_excluded_tasks():
    tasks = [
        make_task(id="1", currency="PHP", pricing_type="fixed", fixed_price=1000),
        make_task(id="2", currency="USD", pricing_type="fixed", fixed_price=50),
    ]
    report = build_invoice_report(tasks, {"p-1": "Shared"}, currency="php")
    assert report.grand_total_cents == 1000
    assert report.excluded_task_ids == ["2"]
    assert report.currency == "PHP"


def test_grand_total_equals_sum_of_subtotals():
    tasks = [
        make_task(id=str(i), project_id=f"p-{i % 3}", hours=Decimal(i) / 4, hourly_rate=1234)
        for i in range(1, 12)
    ]
    report = build_invoice_report(tasks, {"p-0": "A", "p-1": "B", "p-2": "C"})
    assert report.grand_total_cents == sum(g.subtotal_cents for g in report.groups)
    assert report.task_count == 11


def test_report_to_dict_is_integer_cents():
    report = build_invoice_report([make_task(hours=Decimal("1.5"), hourly_rate=333)], {"p-1": "X"})
    body = report.to_dict()
    assert body["grand_total_cents"] == 500
    assert body["groups"][0]["tasks"][0]["amount_cents"] == 500
    assert isinstance(body["groups"][0]["subtotal_cents"], int)


def test_empty_report():
    report = build_invoice_report([])
    assert report.groups == []
    assert report.grand_total_cents == 0


# ============================================================
# INVOICE PARTIES
# ============================================================

def test_render_party_skips_blank_fields():
    party = InvoiceParty(org_name="Acme", name="", address="1 Main St", email="a@acme.test")
    assert render_party(party) == "Acme\n1 Main St\na@acme.test"


def test_reconcile_party_text():
    party = InvoiceParty(org_name="Acme", name="Ana", phone="555")
    rendered, diverged = reconcile_party_text(party, "Acme\n  Ana \n\n555")
    assert rendered == "Acme\nAna\n555"
    assert diverged is False

    rendered, diverged = reconcile_party_text(party, "Someone Else")
    assert rendered == "Acme\nAna\n555"
    assert diverged is True

    assert reconcile_party_text(party, None) == ("Acme\nAna\n555", False)
