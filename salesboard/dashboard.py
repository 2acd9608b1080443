import dataclasses
import datetime
import logging
from json import JSONEncoder
from typing import List

import numpy as np
import pandas as pd

from salesboard.aggregation import PeriodComparison, PeriodSummary, compare_periods, filter_period
from salesboard.constants import API_FIELD_NAMES, CURRENCY, DERIVED_FIELDS, RAW_FIELDS
from salesboard.diagnosis import (
    DiagnosisReport,
    assess_daily_health,
    funnel_status,
    quick_insight,
    status_badge,
)
from salesboard.importer import month_bounds
from salesboard.metrics import derive_metrics, pct_change

logger = logging.getLogger(__name__)

TREND_DATE_FORMAT = "%d %b"


class KpiCard:
    def __init__(self):
        self.title = ""
        self.value = 0
        self.previous = 0
        self.change = 0
        self.format = "currency"
        self.displayValue = ""


class TrendChart:
    def __init__(self):
        self.plotStyle = "trend_chart"
        self.title = ""
        self.xAxis = []
        self.series = {}


class MixChart:
    def __init__(self):
        self.plotStyle = "mix_chart"
        self.title = ""
        self.slices = []


class FunnelLevel:
    def __init__(self):
        self.key = ""
        self.label = ""
        self.value = 0
        self.baseline = 0
        self.pct = ""
        self.status = ""
        self.rates = {}


class MonthlyTable:
    def __init__(self):
        self.plotStyle = "monthly_table"
        self.title = ""
        self.month = ""
        self.headers = []
        self.rows = []


class AnalysisSection:
    def __init__(self):
        self.plotStyle = "analysis"
        self.key = ""
        self.title = ""
        self.change = 0
        self.current = 0
        self.previous = 0
        self.analysis = ""
        self.recommendation = ""


class Dashboard:
    def __init__(self):
        self.blocks: List[KpiCard, TrendChart, MixChart, FunnelLevel] = list()
        self.title = ""
        self.startDate = ""
        self.endDate = ""
        self.comparisonStartDate = ""
        self.comparisonEndDate = ""
        self.currency = CURRENCY
        self.status = {}
        self.insight = ""


class Encoder(JSONEncoder):
    def default(self, o):
        if isinstance(o, np.integer):
            return int(o)
        if isinstance(o, np.floating):
            return float(o)
        if isinstance(o, np.bool_):
            return bool(o)
        if isinstance(o, (datetime.date, datetime.datetime)):
            return o.isoformat()
        if dataclasses.is_dataclass(o):
            return dataclasses.asdict(o)
        return o.__dict__


def format_pct_change(current, previous, invert=False) -> str:
    """
    Formats the change from ``previous`` to ``current`` for display, e.g. '+12.3%'.

    With a zero baseline any positive value shows as '+100%' ('>+100%' for
    costs, where growth from nothing is unbounded) and anything else as '0%'.
    """
    if previous == 0:
        if current > 0:
            return ">+100%" if invert else "+100%"
        return "0%"
    change = pct_change(current, previous)
    sign = "+" if change > 0 else ""
    return f"{sign}{change:.1f}%"


def format_currency(value) -> str:
    return f"{CURRENCY} {value:,.2f}"


def summary_payload(summary: PeriodSummary) -> dict:
    """A period summary keyed by API names, as returned by the summary endpoint."""
    payload = {API_FIELD_NAMES.get(name, name): value for name, value in summary.metric_values().items()}
    payload.update({
        "startDate": summary.start,
        "endDate": summary.end,
        "recordCount": summary.record_count,
        "totalAdsSpend": summary.total_ads_spend,
        "totalLiveGmv": summary.gmv_sale_live,
        "totalDirectShop": summary.direct_shop_sale,
        "liveGmvShare": summary.live_gmv_share,
    })
    return payload


def build_kpi_cards(comparison: PeriodComparison) -> list:
    """KPI cards for sales, ads spend and ROI against the previous period."""
    cards = []
    for title, metric, value_format in [
        ("Total Sale", "total_sale", "currency"),
        ("Total Sale GMV", "total_sale_gmv", "currency"),
        ("Total Ads Spend", "total_ads_spend", "currency"),
        ("ROI Total", "roi_total", "ratio"),
        ("ROI GMV", "roi_gmv", "ratio"),
        ("Conversion Rate", "cr", "percent"),
    ]:
        card = KpiCard()
        card.title = title
        card.value = getattr(comparison.current, metric)
        card.previous = getattr(comparison.previous, metric)
        card.change = comparison.change(metric)
        card.format = value_format
        if value_format == "currency":
            card.displayValue = format_currency(card.value)
        elif value_format == "percent":
            card.displayValue = f"{card.value:.2f}%"
        else:
            card.displayValue = f"{card.value:.2f}"
        cards.append(card)
    return cards


def build_trend_chart(period_df: pd.DataFrame) -> TrendChart:
    """Daily sale, ads spend and ROI series for the records of one period."""
    chart = TrendChart()
    chart.title = "Daily Sales vs Ads Spend"
    if period_df.empty:
        chart.series = {"totalSale": [], "totalAdsSpend": [], "roiTotal": []}
        return chart

    df = derive_metrics(period_df)
    chart.xAxis = [day.strftime(TREND_DATE_FORMAT) for day in df["date"]]
    chart.series = {
        "totalSale": df["total_sale"].round(2).tolist(),
        "totalAdsSpend": df["total_ads_spend"].round(2).tolist(),
        "roiTotal": df["roi_total"].round(2).tolist(),
    }
    return chart


def build_mix_chart(summary: PeriodSummary) -> MixChart:
    """Share of total sales from product GMV, live GMV and direct shop sales."""
    chart = MixChart()
    chart.title = "Sales Mix"
    # Avoid dividing by zero for an empty period
    total = summary.total_sale or 1
    for name, value in [
        ("GMV Product", summary.total_sale_gmv - summary.gmv_sale_live),
        ("Live GMV", summary.gmv_sale_live),
        ("Direct Shop", summary.direct_shop_sale),
    ]:
        chart.slices.append({"name": name, "value": value, "percentage": round(value / total * 100, 1)})
    return chart


def build_funnel(comparison: PeriodComparison) -> list:
    """
    Funnel levels from traffic down to return on ad spend.

    Each level is coloured by comparing the current period with the previous
    one. Ads cost is judged on CAC, where lower is better.

    Args:
        comparison (PeriodComparison): Current and previous period summaries.

    Returns:
        list[FunnelLevel]: Visitor, customers, revenue, ads cost and ROI levels.
    """
    current, previous = comparison.current, comparison.previous
    levels = []

    def add_level(key, label, value, baseline, judged_current, judged_baseline, rates, invert=False):
        level = FunnelLevel()
        level.key = key
        level.label = label
        level.value = value
        level.baseline = baseline
        level.pct = format_pct_change(judged_current, judged_baseline, invert)
        level.status = funnel_status(judged_current, judged_baseline, invert)
        level.rates = rates
        levels.append(level)

    add_level("visitor", "Visitor", current.visitor, previous.visitor,
              current.visitor, previous.visitor, {})
    add_level("customers", "Customers", current.customers, previous.customers,
              current.cr, previous.cr, {"cr": current.cr, "baselineCr": previous.cr})
    add_level("revenue", "Revenue", current.total_sale, previous.total_sale,
              current.total_sale, previous.total_sale,
              {"aov": current.aov, "rpv": current.rpv, "baselineAov": previous.aov, "baselineRpv": previous.rpv})
    add_level("ads", "Ads Cost", current.total_ads_spend, previous.total_ads_spend,
              current.cac, previous.cac, {"cac": current.cac, "baselineCac": previous.cac}, invert=True)
    add_level("roi", "ROI", current.roi_total, previous.roi_total,
              current.roi_total, previous.roi_total, {})
    return levels


def build_monthly_table(daily_df: pd.DataFrame, month: str) -> MonthlyTable:
    """
    The daily table for one month with per-day health.

    ``daily_df`` should also hold the days before the month so the first days
    of the month have a rolling lookback; only the month's days are returned.

    Args:
        daily_df (pd.DataFrame): Raw daily records covering the month and its lookback.
        month (str): 'YYYY-MM'.

    Returns:
        MonthlyTable: One row per recorded day, oldest first.
    """
    first_day, last_day = month_bounds(month)
    table = MonthlyTable()
    table.title = f"Daily Records {month}"
    table.month = month
    table.headers = ["id", "date"] + [API_FIELD_NAMES[f] for f in RAW_FIELDS + DERIVED_FIELDS] + \
        ["status", "reasons"]

    if daily_df.empty:
        return table

    assessed = assess_daily_health(derive_metrics(daily_df))
    in_month = filter_period(assessed, first_day, last_day)

    for _, row in in_month.iterrows():
        table_row = {"id": row.get("id"), "date": row["date"].date()}
        for name in RAW_FIELDS + DERIVED_FIELDS:
            table_row[API_FIELD_NAMES[name]] = row[name]
        table_row["status"] = row["status"]
        table_row["reasons"] = row["reasons"]
        table.rows.append(table_row)
    return table


def build_analysis_blocks(diagnosis: DiagnosisReport) -> list:
    blocks = []
    for key, title in [("sale", "Sales Performance"), ("prod", "Product GMV"), ("live", "Live GMV")]:
        section = getattr(diagnosis, key)
        block = AnalysisSection()
        block.key = key
        block.title = title
        block.change = section.change
        block.current = section.curr
        block.previous = section.prev
        block.analysis = section.comment
        block.recommendation = section.action
        blocks.append(block)
    return blocks


def build_dashboard(daily_df: pd.DataFrame, start, end, title: str = "") -> Dashboard:
    """
    Assembles the overview dashboard for ``[start, end]``.

    Args:
        daily_df (pd.DataFrame): Raw daily records covering the period and the previous period.
        start: First day of the period.
        end: Last day of the period (inclusive).
        title (str): Shown as the dashboard heading.

    Returns:
        Dashboard: KPI cards, trend chart, sales mix and funnel blocks with the status badge and insight.
    """
    comparison = compare_periods(daily_df, start, end)

    dashboard = Dashboard()
    dashboard.title = title
    dashboard.startDate = comparison.current.start
    dashboard.endDate = comparison.current.end
    dashboard.comparisonStartDate = comparison.previous.start
    dashboard.comparisonEndDate = comparison.previous.end
    dashboard.status = status_badge(comparison)
    dashboard.insight = quick_insight(comparison)

    dashboard.blocks.extend(build_kpi_cards(comparison))
    dashboard.blocks.append(build_trend_chart(filter_period(daily_df, start, end)))
    dashboard.blocks.append(build_mix_chart(comparison.current))
    dashboard.blocks.extend(build_funnel(comparison))

    logger.debug(f"Built dashboard with {len(dashboard.blocks)} blocks")
    return dashboard
