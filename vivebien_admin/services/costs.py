"""
Cost Tracking - AI usage rollup and monthly cost tracker.

Variable cost comes from the two AI usage sources; fixed cost is a table of
monthly infrastructure line items.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from vivebien_admin.models.views import (
    AIUsageSummary,
    FixedCostItem,
    ModelUsage,
    MonthlyCost,
    UsageTotals,
)
from vivebien_admin.services.derived import month_label, percent_change

TEXT_GENERATION = "text_generation"
TRANSCRIPTION = "transcription"

# Monthly infrastructure line items (USD)
FIXED_MONTHLY_COSTS: tuple[FixedCostItem, ...] = (
    FixedCostItem(name="Database hosting", monthly_usd=25.0),
    FixedCostItem(name="Application hosting", monthly_usd=20.0),
    FixedCostItem(name="WhatsApp Business API", monthly_usd=15.0),
    FixedCostItem(name="Automation workflows", monthly_usd=20.0),
)


@dataclass(frozen=True)
class ModelUsageRow:
    """Per-model aggregate from one usage source."""

    model: str
    calls: int
    cost_usd: Decimal | float
    input_tokens: int = 0
    output_tokens: int = 0
    audio_seconds: Decimal | float = 0


def fixed_monthly_total(items: Iterable[FixedCostItem] = FIXED_MONTHLY_COSTS) -> float:
    return round(sum(item.monthly_usd for item in items), 2)


def _totals(rows: Iterable[ModelUsageRow]) -> UsageTotals:
    totals = UsageTotals()
    for row in rows:
        totals.calls += int(row.calls or 0)
        totals.cost_usd += float(row.cost_usd or 0)
        totals.input_tokens += int(row.input_tokens or 0)
        totals.output_tokens += int(row.output_tokens or 0)
        totals.audio_seconds += float(row.audio_seconds or 0)
    totals.cost_usd = round(totals.cost_usd, 6)
    totals.audio_seconds = round(totals.audio_seconds, 2)
    return totals


def rollup_ai_usage(
    days: int,
    text_rows: Iterable[ModelUsageRow],
    transcription_rows: Iterable[ModelUsageRow],
) -> AIUsageSummary:
    """
    Combine both AI usage sources into one summary.

    The per-model breakdown keeps one entry per (model, source) and is sorted
    by call count, busiest first.
    """
    text_rows = list(text_rows)
    transcription_rows = list(transcription_rows)

    text_totals = _totals(text_rows)
    transcription_totals = _totals(transcription_rows)
    combined = _totals([*text_rows, *transcription_rows])

    by_model = [
        ModelUsage(
            model=row.model,
            source=source,
            calls=int(row.calls or 0),
            cost_usd=round(float(row.cost_usd or 0), 6),
            input_tokens=int(row.input_tokens or 0),
            output_tokens=int(row.output_tokens or 0),
            audio_seconds=round(float(row.audio_seconds or 0), 2),
        )
        for source, rows in ((TEXT_GENERATION, text_rows), (TRANSCRIPTION, transcription_rows))
        for row in rows
    ]
    by_model.sort(key=lambda usage: usage.calls, reverse=True)

    return AIUsageSummary(
        days=days,
        text_generation=text_totals,
        transcription=transcription_totals,
        total=combined,
        by_model=by_model,
    )


def month_starts(months: int, today: date) -> list[date]:
    """First day of each of the last `months` calendar months, ascending."""
    starts = []
    year, month = today.year, today.month
    for _ in range(months):
        starts.append(date(year, month, 1))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(starts))


def build_monthly_costs(
    months: int,
    today: date,
    ai_cost_by_month: Mapping[date, Decimal | float],
    fixed_items: Iterable[FixedCostItem] = FIXED_MONTHLY_COSTS,
) -> list[MonthlyCost]:
    """One zero-filled row per month with month-over-month change in total cost."""
    fixed = fixed_monthly_total(fixed_items)
    rows: list[MonthlyCost] = []
    previous_total: float | None = None

    for start in month_starts(months, today):
        ai_cost = round(float(ai_cost_by_month.get(start, 0) or 0), 2)
        total = round(ai_cost + fixed, 2)
        rows.append(
            MonthlyCost(
                month=start.strftime("%Y-%m"),
                label=month_label(start),
                ai_cost_usd=ai_cost,
                fixed_cost_usd=fixed,
                total_cost_usd=total,
                change_percent=percent_change(total, previous_total),
            )
        )
        previous_total = total

    return rows
