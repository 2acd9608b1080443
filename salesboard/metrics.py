# SPDX-License-Identifier: Apache-2.0
"""
Metric derivation for daily e-commerce records.

Every formula here accepts either scalars (a single record) or pandas Series
(a whole DataFrame of records), so the same expressions back the per-record
API responses and the vectorised dashboard calculations.
"""
import pandas as pd

from salesboard.constants import (
    API_FIELD_NAMES,
    CPM_MULTIPLIER,
    NO_BASELINE_CHANGE,
    PCT_MULTIPLIER,
    RAW_FIELDS,
    RAW_INT_FIELDS,
)


def safe_divide(numerator, denominator, multiplier=1.0):
    """
    Divide two values, returning 0 wherever the denominator is not positive.

    Args:
        numerator (float | pd.Series): The dividend.
        denominator (float | pd.Series): The divisor.
        multiplier (float): Applied to the quotient, e.g. 100 for percentages.

    Returns:
        float | pd.Series: The scaled quotient, 0 where the division is undefined.
    """
    if isinstance(denominator, pd.Series):
        quotient = numerator / denominator.where(denominator > 0)
        return (quotient * multiplier).fillna(0.0)

    if denominator > 0:
        return numerator / denominator * multiplier
    return 0.0


def pct_change(current, previous):
    """
    Percentage change from ``previous`` to ``current``.

    A zero baseline reports 100% growth when the current value is positive and
    no change otherwise.
    """
    if previous == 0:
        return NO_BASELINE_CHANGE if current > 0 else 0.0
    return (current - previous) / previous * PCT_MULTIPLIER


def derived_fields(values):
    """
    Compute the derived fields of one record or of a frame of records.

    Args:
        values (dict | pd.DataFrame): Anything indexable by raw field name.

    Returns:
        dict: Derived field name -> scalar or Series.
    """
    total_ads_spend = values["gmv_ads_spend"] + values["ttam_spend_ads"]

    return {
        # Sales split
        "gmv_sale_product": values["total_sale_gmv"] - values["gmv_sale_live"],
        "direct_shop_sale": values["total_sale"] - values["total_sale_gmv"],
        # Ads split
        "gmv_product_ads_spend": values["gmv_ads_spend"] - values["gmv_live_ads_spend"],
        "total_ads_spend": total_ads_spend,
        "cpm": safe_divide(values["ttam_spend_ads"], values["ttam_impressions"], CPM_MULTIPLIER),
        # Return on ad spend
        "roi_total": safe_divide(values["total_sale"], total_ads_spend),
        "roi_gmv": safe_divide(values["total_sale_gmv"], total_ads_spend),
    }


def calculate_metrics(record: dict) -> dict:
    """
    Enrich a single daily record with its derived fields.

    Missing or null raw values are treated as 0. The input is not modified.

    Args:
        record (dict): A daily record keyed by snake_case field names.

    Returns:
        dict: A copy of the record with raw fields normalised and derived fields added.
    """
    enriched = dict(record)
    for field in RAW_FIELDS:
        enriched[field] = record.get(field) or 0
    enriched.update(derived_fields(enriched))
    return enriched


def derive_metrics(daily_df: pd.DataFrame) -> pd.DataFrame:
    """
    Add the derived metric columns to a DataFrame of daily records.

    Raw columns that are missing or hold non-numeric values are coerced to 0 so
    partially filled rows still produce totals.

    Args:
        daily_df (pd.DataFrame): Daily records with a 'date' column and raw fields.

    Returns:
        pd.DataFrame: A new DataFrame, sorted by date, with derived columns appended.
    """
    df = daily_df.copy()

    for field in RAW_FIELDS:
        if field not in df.columns:
            df[field] = 0
        df[field] = pd.to_numeric(df[field], errors="coerce").fillna(0)

    df[RAW_INT_FIELDS] = df[RAW_INT_FIELDS].astype("int64")

    for name, series in derived_fields(df).items():
        df[name] = series

    if "date" in df.columns:
        df["date"] = pd.to_datetime(df["date"])
        df = df.sort_values(by="date").reset_index(drop=True)

    return df


def funnel_rates(visitor, customers, revenue, ads):
    """
    Funnel ratios computed from period totals.

    Returns:
        dict: ``cr`` (conversion rate, percent), ``aov``, ``rpv``, ``cac`` and ``roi``.
    """
    return {
        "cr": safe_divide(customers, visitor, PCT_MULTIPLIER),
        "aov": safe_divide(revenue, customers),
        "rpv": safe_divide(revenue, visitor),
        "cac": safe_divide(ads, customers),
        "roi": safe_divide(revenue, ads),
    }


def to_api_record(record: dict) -> dict:
    """Rename snake_case record fields to the camelCase names used by the API."""
    return {API_FIELD_NAMES.get(key, key): value for key, value in record.items()}
