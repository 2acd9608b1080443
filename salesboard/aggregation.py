# SPDX-License-Identifier: Apache-2.0
"""
Period aggregation for daily records.

A period is an inclusive ``[start, end]`` range of calendar days. Sums are taken
over the raw and derived columns, and every ratio is recomputed from the sums so
that a period's ROI is weighted by spend rather than averaged across days.
"""
import dataclasses
import datetime
import logging
from dataclasses import dataclass, field

import pandas as pd

from salesboard.constants import CPM_MULTIPLIER, RAW_INT_FIELDS, ROLLING_WINDOW_DAYS
from salesboard.metrics import derive_metrics, funnel_rates, pct_change, safe_divide

logger = logging.getLogger(__name__)

SUMMED_FIELDS = [
    "total_sale",
    "total_sale_gmv",
    "gmv_sale_live",
    "gmv_sale_product",
    "direct_shop_sale",
    "gmv_ads_spend",
    "gmv_live_ads_spend",
    "gmv_product_ads_spend",
    "ttam_spend_ads",
    "ttam_impressions",
    "total_ads_spend",
    "visitor",
    "customers",
]


@dataclass
class PeriodSummary:
    start: datetime.date
    end: datetime.date
    record_count: int = 0
    total_sale: float = 0.0
    total_sale_gmv: float = 0.0
    gmv_sale_live: float = 0.0
    gmv_sale_product: float = 0.0
    direct_shop_sale: float = 0.0
    gmv_ads_spend: float = 0.0
    gmv_live_ads_spend: float = 0.0
    gmv_product_ads_spend: float = 0.0
    ttam_spend_ads: float = 0.0
    ttam_impressions: int = 0
    total_ads_spend: float = 0.0
    visitor: int = 0
    customers: int = 0
    roi_total: float = 0.0
    roi_gmv: float = 0.0
    cpm: float = 0.0
    cr: float = 0.0
    aov: float = 0.0
    rpv: float = 0.0
    cac: float = 0.0

    @property
    def live_gmv_share(self):
        """Live GMV as a percentage of total GMV."""
        return safe_divide(self.gmv_sale_live, self.total_sale_gmv, 100)

    def metric_values(self) -> dict:
        """All numeric summary metrics, keyed by name."""
        return {
            f.name: getattr(self, f.name)
            for f in dataclasses.fields(self)
            if f.name not in ("start", "end", "record_count")
        }


@dataclass
class PeriodComparison:
    current: PeriodSummary
    previous: PeriodSummary
    changes: dict = field(default_factory=dict)

    def change(self, metric: str) -> float:
        return self.changes[metric]


def to_date(value) -> datetime.date:
    """Coerce a date, datetime, Timestamp or ISO string into a ``datetime.date``."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return pd.Timestamp(value).date()


def previous_period(start, end):
    """
    The period of equal length immediately before ``[start, end]``.

    Args:
        start (datetime.date): First day of the current period.
        end (datetime.date): Last day of the current period (inclusive).

    Returns:
        tuple: ``(prev_start, prev_end)``, both inclusive.

    Raises:
        ValueError: If ``start`` is after ``end``.
    """
    start, end = to_date(start), to_date(end)
    if start > end:
        raise ValueError(f"Period start {start} is after period end {end}")

    days = (end - start).days + 1
    prev_end = start - datetime.timedelta(days=1)
    prev_start = prev_end - datetime.timedelta(days=days - 1)
    return prev_start, prev_end


def filter_period(daily_df: pd.DataFrame, start, end) -> pd.DataFrame:
    """Rows of ``daily_df`` whose date falls inside ``[start, end]``."""
    if daily_df.empty:
        return daily_df
    dates = pd.to_datetime(daily_df["date"])
    mask = (dates >= pd.Timestamp(to_date(start))) & (dates <= pd.Timestamp(to_date(end)))
    return daily_df.loc[mask]


def summarize_totals(totals: dict, start, end, record_count=0) -> PeriodSummary:
    """
    Build a PeriodSummary from summed columns, recomputing every ratio.

    Args:
        totals (dict): Sums keyed by the names in ``SUMMED_FIELDS``.
        start: First day of the period.
        end: Last day of the period.
        record_count (int): Number of daily records that were summed.

    Returns:
        PeriodSummary: The summary with weighted ratios.
    """
    values = {
        name: int(totals.get(name, 0)) if name in RAW_INT_FIELDS else float(totals.get(name, 0))
        for name in SUMMED_FIELDS
    }

    values["roi_total"] = safe_divide(values["total_sale"], values["total_ads_spend"])
    values["roi_gmv"] = safe_divide(values["total_sale_gmv"], values["total_ads_spend"])
    values["cpm"] = safe_divide(values["ttam_spend_ads"], values["ttam_impressions"], CPM_MULTIPLIER)

    rates = funnel_rates(values["visitor"], values["customers"], values["total_sale"], values["total_ads_spend"])
    rates.pop("roi")  # same as roi_total
    values.update(rates)

    return PeriodSummary(start=to_date(start), end=to_date(end), record_count=int(record_count), **values)


def summarize_period(daily_df: pd.DataFrame, start, end) -> PeriodSummary:
    """
    Sum the records inside ``[start, end]`` and recompute the weighted ratios.

    Args:
        daily_df (pd.DataFrame): Daily records, raw fields only or already derived.
        start: First day of the period.
        end: Last day of the period (inclusive).

    Returns:
        PeriodSummary: All-zero totals when the period holds no records.
    """
    period_df = filter_period(daily_df, start, end)
    if period_df.empty:
        return summarize_totals({}, start, end)

    period_df = derive_metrics(period_df)
    totals = period_df[SUMMED_FIELDS].sum().to_dict()
    return summarize_totals(totals, start, end, record_count=len(period_df))


def compare_periods(daily_df: pd.DataFrame, start, end) -> PeriodComparison:
    """
    Summarise ``[start, end]`` and its previous period, and the change between them.

    ``daily_df`` must cover both periods; records outside them are ignored.
    """
    prev_start, prev_end = previous_period(start, end)

    current = summarize_period(daily_df, start, end)
    previous = summarize_period(daily_df, prev_start, prev_end)

    current_values = current.metric_values()
    previous_values = previous.metric_values()
    changes = {name: pct_change(current_values[name], previous_values[name]) for name in current_values}

    logger.debug(f"Compared {current.start}..{current.end} against {previous.start}..{previous.end}")
    return PeriodComparison(current=current, previous=previous, changes=changes)


def summarize_by_month(daily_df: pd.DataFrame) -> list:
    """
    Roll daily records up into calendar months.

    Returns:
        list[PeriodSummary]: One summary per month that holds records, oldest first.
    """
    if daily_df.empty:
        return []

    df = derive_metrics(daily_df)
    monthly = df.resample("MS", on="date")
    sums = monthly[SUMMED_FIELDS].sum()
    counts = monthly.size()

    summaries = []
    for month_start, row in sums.iterrows():
        if counts.loc[month_start] == 0:
            continue
        month_end = (month_start + pd.offsets.MonthEnd(0)).date()
        summaries.append(summarize_totals(row.to_dict(), month_start.date(), month_end,
                                          record_count=counts.loc[month_start]))
    return summaries


def rolling_weighted_roi(daily_df: pd.DataFrame, window: int = ROLLING_WINDOW_DAYS) -> pd.Series:
    """
    GMV ROI of the ``window`` records strictly before each record.

    The ratio is weighted: ``sum(total_sale_gmv) / sum(total_ads_spend)`` over the
    preceding records. The first record, and any record whose preceding spend
    is 0, gets 0.

    Args:
        daily_df (pd.DataFrame): Derived daily records ordered by date.
        window (int): Number of preceding records to include.

    Returns:
        pd.Series: Aligned with ``daily_df``'s index.
    """
    gmv = daily_df["total_sale_gmv"].rolling(window, min_periods=1).sum().shift(1)
    ads = daily_df["total_ads_spend"].rolling(window, min_periods=1).sum().shift(1)
    return safe_divide(gmv.fillna(0), ads.fillna(0))


def consecutive_decline(daily_df: pd.DataFrame) -> pd.Series:
    """
    Number of consecutive record-to-record drops in ``roi_gmv`` ending at each record.

    Returns:
        pd.Series: Integer counts aligned with ``daily_df``'s index.
    """
    declined = daily_df["roi_gmv"].diff() < 0
    # A new streak group starts at every record that did not decline
    streak_id = (~declined).cumsum()
    return declined.astype("int64").groupby(streak_id).cumsum()
