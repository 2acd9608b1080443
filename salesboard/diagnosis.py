# SPDX-License-Identifier: Apache-2.0
"""
Rule-based diagnosis of a period comparison.

The rules compare percentage changes against fixed thresholds and pick canned
analysis and recommendation texts from ``narratives.yaml``. The same module
also holds the smaller dashboard rules (status badge, quick insight, funnel
level colours) and the per-day health assessment behind the monthly table.
"""
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import numpy as np
import pandas as pd
import yaml

from salesboard.aggregation import PeriodComparison, consecutive_decline, rolling_weighted_roi
from salesboard.constants import (
    AOV_DROP_THRESHOLD,
    CONVERSION_DROP_THRESHOLD,
    FUNNEL_YELLOW_CEILING,
    FUNNEL_YELLOW_FLOOR,
    HEALTHY_ROI_FLOOR,
    LIVE_DRIVEN_GMV_SHARE,
    LIVE_DRIVEN_SALES_GROWTH,
    LIVE_GMV_DROP_THRESHOLD,
    MAX_REASON_HINTS,
    PRODUCT_GMV_DROP_THRESHOLD,
    RISK_CONSECUTIVE_DECLINE,
    RISK_DEVIATION,
    RISK_ROI_DROP,
    RISK_SPEND_GROWTH,
    ROLLING_WINDOW_DAYS,
    SPEND_OUTPACING_ROI_DROP,
    STABLE_BAND,
    STATUS_HEALTHY,
    STATUS_RISK,
    STATUS_STABLE,
    STATUS_WATCH,
    TRAFFIC_DROP_THRESHOLD,
    WATCH_CONSECUTIVE_DECLINE,
    WATCH_DEVIATION,
)
from salesboard.metrics import pct_change, safe_divide

logger = logging.getLogger(__name__)

NARRATIVES_PATH = Path(os.path.dirname(__file__)) / "narratives.yaml"

STATUS_COLORS = {
    STATUS_HEALTHY: "green",
    STATUS_STABLE: "green",
    STATUS_WATCH: "yellow",
    STATUS_RISK: "red",
}

REASON_SPEND_SPIKE = "Spend Spike"
REASON_LIVE_DROP = "Live Drop"
REASON_ADS_EFFICIENCY_DROP = "Ads Efficiency Drop"


@dataclass
class DiagnosisSection:
    change: float
    comment: str
    action: str
    curr: float
    prev: float


@dataclass
class DiagnosisReport:
    sale: DiagnosisSection
    prod: DiagnosisSection
    live: DiagnosisSection
    summary: str
    roi: dict


@lru_cache(maxsize=None)
def load_narratives(path=NARRATIVES_PATH) -> dict:
    """Load the canned texts, cached per path."""
    with open(path, encoding="utf-8") as narratives_file:
        return yaml.safe_load(narratives_file)


def _sale_rule(sale_change, visitor_change, cr_change, aov_change, roi_change):
    """
    Pick the sales narrative key.

    A decline is attributed to the first funnel stage that dropped past its
    threshold, checked from the top of the funnel down.
    """
    if sale_change < 0:
        if visitor_change < TRAFFIC_DROP_THRESHOLD:
            return "traffic"
        if cr_change < CONVERSION_DROP_THRESHOLD:
            return "conversion"
        if aov_change < AOV_DROP_THRESHOLD:
            return "basket"
        if roi_change < 0:
            return "efficiency"
        return "general"

    return "excellent" if roi_change > 0 else "scaling"


def _summary_rule(sale_change, current_ads, previous_ads):
    ads_change = pct_change(current_ads, previous_ads)
    if current_ads > previous_ads and sale_change < ads_change:
        return "unhealthy"
    if sale_change < 0 and current_ads < previous_ads:
        return "passive"
    return "momentum"


def diagnose(comparison: PeriodComparison, narratives: dict = None) -> DiagnosisReport:
    """
    Build the diagnosis narrative for a period comparison.

    Args:
        comparison (PeriodComparison): Current and previous period summaries.
        narratives (dict, optional): Canned texts; defaults to the packaged ``narratives.yaml``.

    Returns:
        DiagnosisReport: Sale, product and live sections, the root-cause summary
        and the ROI movement.
    """
    narratives = narratives or load_narratives()
    current, previous = comparison.current, comparison.previous

    sale_change = pct_change(current.total_sale, previous.total_sale)
    roi_change = pct_change(current.roi_total, previous.roi_total)

    sale_key = _sale_rule(
        sale_change,
        pct_change(current.visitor, previous.visitor),
        pct_change(current.cr, previous.cr),
        pct_change(current.aov, previous.aov),
        roi_change,
    )
    sale_text = narratives["sale"][sale_key]

    # Product GMV is everything on the platform that did not come from live
    prod_curr = current.total_sale_gmv - current.gmv_sale_live
    prod_prev = previous.total_sale_gmv - previous.gmv_sale_live
    prod_change = pct_change(prod_curr, prod_prev)
    prod_text = narratives["product"]["decline" if prod_change < PRODUCT_GMV_DROP_THRESHOLD else "healthy"]

    live_change = pct_change(current.gmv_sale_live, previous.gmv_sale_live)
    live_text = narratives["live"]["problem" if live_change < LIVE_GMV_DROP_THRESHOLD else "stable"]

    summary_key = _summary_rule(sale_change, current.total_ads_spend, previous.total_ads_spend)
    logger.debug(f"Diagnosis picked sale={sale_key}, summary={summary_key}")

    return DiagnosisReport(
        sale=DiagnosisSection(sale_change, sale_text["comment"], sale_text["action"],
                              current.total_sale, previous.total_sale),
        prod=DiagnosisSection(prod_change, prod_text["comment"], prod_text["action"], prod_curr, prod_prev),
        live=DiagnosisSection(live_change, live_text["comment"], live_text["action"],
                              current.gmv_sale_live, previous.gmv_sale_live),
        summary=narratives["summary"][summary_key],
        roi={"curr": current.roi_total, "prev": previous.roi_total, "change": roi_change},
    )


def status_badge(comparison: PeriodComparison) -> dict:
    """
    Overall dashboard status from ROI level, ROI movement and spend growth.

    Returns:
        dict: ``status`` (Healthy, Watch or Risk) and its ``color``.
    """
    current, previous = comparison.current, comparison.previous
    roi_change = pct_change(current.roi_total, previous.roi_total)
    spend_change = pct_change(current.total_ads_spend, previous.total_ads_spend)

    if roi_change >= 0 and current.roi_total >= HEALTHY_ROI_FLOOR:
        status = STATUS_HEALTHY
    elif roi_change < RISK_ROI_DROP or (spend_change > RISK_SPEND_GROWTH and roi_change < 0):
        status = STATUS_RISK
    else:
        status = STATUS_WATCH

    return {"status": status, "color": STATUS_COLORS[status]}


def quick_insight(comparison: PeriodComparison, narratives: dict = None) -> str:
    """One-line headline for the dashboard."""
    narratives = narratives or load_narratives()
    current, previous = comparison.current, comparison.previous

    sale_change = pct_change(current.total_sale, previous.total_sale)
    spend_change = pct_change(current.total_ads_spend, previous.total_ads_spend)
    roi_change = pct_change(current.roi_total, previous.roi_total)

    if sale_change > LIVE_DRIVEN_SALES_GROWTH and current.live_gmv_share > LIVE_DRIVEN_GMV_SHARE:
        key = "live_driven"
    elif spend_change > sale_change and roi_change < SPEND_OUTPACING_ROI_DROP:
        key = "spend_outpacing"
    elif abs(sale_change) < STABLE_BAND and abs(roi_change) < STABLE_BAND:
        key = "stable"
    elif sale_change > 0 and roi_change > 0:
        key = "strong"
    elif sale_change < 0:
        key = "declined"
    else:
        key = "normal"

    return narratives["insight"][key]


def funnel_status(current, baseline, invert=False) -> str:
    """
    Traffic-light colour of one funnel level against its baseline.

    Args:
        current (float): The value in the current period.
        baseline (float): The value in the comparison period.
        invert (bool): True for costs, where lower is better.

    Returns:
        str: 'green', 'yellow' or 'red'. A zero baseline is always green.
    """
    if baseline == 0:
        return "green"

    ratio = current / baseline
    if invert:
        if ratio <= 1:
            return "green"
        return "yellow" if ratio <= FUNNEL_YELLOW_CEILING else "red"

    if ratio >= 1:
        return "green"
    return "yellow" if ratio >= FUNNEL_YELLOW_FLOOR else "red"


def assess_daily_health(daily_df: pd.DataFrame, window: int = ROLLING_WINDOW_DAYS) -> pd.DataFrame:
    """
    Classify every day as Risk, Watch or Stable and attach reason hints.

    Each day is compared with the spend-weighted GMV ROI of the ``window``
    records before it and with the record immediately before it. Pass in the
    history preceding the days of interest so the first of them has a lookback.

    Args:
        daily_df (pd.DataFrame): Derived daily records ordered by date.
        window (int): Rolling lookback, in records.

    Returns:
        pd.DataFrame: A copy with ``rolling_roi``, ``decline_streak``,
        ``roi_deviation``, ``status`` and ``reasons`` columns added.
    """
    df = daily_df.reset_index(drop=True).copy()
    if df.empty:
        for column in ("rolling_roi", "decline_streak", "roi_deviation", "status", "reasons"):
            df[column] = pd.Series(dtype=object)
        return df

    df["rolling_roi"] = rolling_weighted_roi(df, window)
    df["decline_streak"] = consecutive_decline(df)
    df["roi_deviation"] = safe_divide(df["roi_gmv"] - df["rolling_roi"], df["rolling_roi"], 100)

    prev = df.shift(1)
    has_prev = pd.Series(df.index > 0, index=df.index)
    spend_up = has_prev & (df["total_ads_spend"] > prev["total_ads_spend"])
    roi_down = has_prev & (df["roi_gmv"] < prev["roi_gmv"])

    streak = df["decline_streak"]
    deviation = df["roi_deviation"]
    is_risk = ((streak >= RISK_CONSECUTIVE_DECLINE) & (deviation < RISK_DEVIATION)) | \
              (spend_up & roi_down & (deviation < WATCH_DEVIATION))
    is_watch = (streak >= WATCH_CONSECUTIVE_DECLINE) | ((deviation < WATCH_DEVIATION) & (deviation >= RISK_DEVIATION))
    df["status"] = np.select([is_risk, is_watch], [STATUS_RISK, STATUS_WATCH], default=STATUS_STABLE)

    # Reason hints, in priority order
    live_share = safe_divide(df["gmv_sale_live"], df["total_sale_gmv"], 100)
    spend_spike = spend_up & roi_down
    live_drop = has_prev & (df["gmv_sale_live"] < prev["gmv_sale_live"]) & (live_share < live_share.shift(1))
    efficiency_drop = has_prev & (df["gmv_ads_spend"] >= prev["gmv_ads_spend"]) & \
        (df["total_sale_gmv"] < prev["total_sale_gmv"])

    hints = zip(spend_spike, live_drop, efficiency_drop)
    df["reasons"] = [
        [reason for reason, hit in zip((REASON_SPEND_SPIKE, REASON_LIVE_DROP, REASON_ADS_EFFICIENCY_DROP), flags)
         if hit][:MAX_REASON_HINTS]
        for flags in hints
    ]
    return df
