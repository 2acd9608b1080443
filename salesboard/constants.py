# SPDX-License-Identifier: Apache-2.0
"""
Named constants for the salesboard metric and diagnosis engine.

These constants replace magic numbers throughout the codebase so the business
rules behind the dashboard, the diagnosis narrative and the bulk import read
as what they are.
"""

# ---------------------------------------------------------------------------
# Daily record fields
# ---------------------------------------------------------------------------
RAW_FLOAT_FIELDS = [
    "total_sale",
    "total_sale_gmv",
    "gmv_sale_live",
    "gmv_ads_spend",
    "gmv_live_ads_spend",
    "ttam_spend_ads",
]
RAW_INT_FIELDS = ["ttam_impressions", "visitor", "customers"]
RAW_FIELDS = RAW_FLOAT_FIELDS + RAW_INT_FIELDS
OPTIONAL_FIELDS = ["visitor", "customers"]  # default to 0 when omitted

DERIVED_FIELDS = [
    "gmv_sale_product",
    "direct_shop_sale",
    "gmv_product_ads_spend",
    "total_ads_spend",
    "cpm",
    "roi_total",
    "roi_gmv",
]

# snake_case storage name -> camelCase API name
API_FIELD_NAMES = {
    "total_sale": "totalSale",
    "total_sale_gmv": "totalSaleGmv",
    "gmv_sale_live": "gmvSaleLive",
    "gmv_ads_spend": "gmvAdsSpend",
    "gmv_live_ads_spend": "gmvLiveAdsSpend",
    "ttam_spend_ads": "ttamSpendAds",
    "ttam_impressions": "ttamImpressions",
    "visitor": "visitor",
    "customers": "customers",
    "gmv_sale_product": "gmvSaleProduct",
    "direct_shop_sale": "directShopSale",
    "gmv_product_ads_spend": "gmvProductAdsSpend",
    "total_ads_spend": "totalAdsSpend",
    "cpm": "cpm",
    "roi_total": "roiTotal",
    "roi_gmv": "roiGmv",
}

CPM_MULTIPLIER = 1000  # cost per thousand impressions
PCT_MULTIPLIER = 100
NO_BASELINE_CHANGE = 100.0  # reported change when the previous value is 0

ISO_DATE_FORMAT = "%Y-%m-%d"
MONTH_FORMAT = "%Y-%m"
IMPORT_DATE_FORMAT = "%d/%m/%Y"
CURRENCY = "RM"

# ---------------------------------------------------------------------------
# Diagnosis thresholds (percent change between current and previous period)
# ---------------------------------------------------------------------------
TRAFFIC_DROP_THRESHOLD = -10
CONVERSION_DROP_THRESHOLD = -10
AOV_DROP_THRESHOLD = -10
PRODUCT_GMV_DROP_THRESHOLD = -10
LIVE_GMV_DROP_THRESHOLD = -15

# Status badge
HEALTHY_ROI_FLOOR = 2
RISK_ROI_DROP = -10
RISK_SPEND_GROWTH = 20

# Quick insight
LIVE_DRIVEN_SALES_GROWTH = 10
LIVE_DRIVEN_GMV_SHARE = 50
SPEND_OUTPACING_ROI_DROP = -5
STABLE_BAND = 5

# Funnel level status: current / baseline ratio bands
FUNNEL_YELLOW_FLOOR = 0.9  # higher is better
FUNNEL_YELLOW_CEILING = 1.1  # lower is better (costs)

# ---------------------------------------------------------------------------
# Daily health (monthly table)
# ---------------------------------------------------------------------------
ROLLING_WINDOW_DAYS = 7
RISK_CONSECUTIVE_DECLINE = 3
WATCH_CONSECUTIVE_DECLINE = 2
RISK_DEVIATION = -30
WATCH_DEVIATION = -20
MAX_REASON_HINTS = 2

STATUS_RISK = "Risk"
STATUS_WATCH = "Watch"
STATUS_STABLE = "Stable"
STATUS_HEALTHY = "Healthy"

# ---------------------------------------------------------------------------
# Bulk import
#
# The spreadsheet columns, in order. Index 0 is the date; the remaining
# positions map onto record fields. GMV Live Ads Spend comes before GMV Ads
# Spend to match the manual entry form.
# ---------------------------------------------------------------------------
TEMPLATE_HEADERS = [
    "Date (DD/MM/YYYY)",
    "Total Sale",
    "Total Sale GMV",
    "GMV Sale Live",
    "GMV Live Ads Spend",
    "GMV Ads Spend",
    "TTAM Spend",
    "TTAM Impressions",
    "Visitor",
    "Customers",
]
IMPORT_COLUMN_FIELDS = [
    "total_sale",
    "total_sale_gmv",
    "gmv_sale_live",
    "gmv_live_ads_spend",
    "gmv_ads_spend",
    "ttam_spend_ads",
    "ttam_impressions",
    "visitor",
    "customers",
]
TEMPLATE_SAMPLE_ROWS = [
    ["01/01/2026", 10000, 8000, 5000, 600, 1000, 500, 50000, 1000, 50],
    ["02/01/2026", 12000, 9000, 6000, 700, 1200, 600, 60000, 1200, 60],
]
TEMPLATE_COLUMN_WIDTHS = [18, 12, 15, 15, 20, 15, 12, 16, 10, 10]
TEMPLATE_SHEET_NAME = "Daily Records"

# ---------------------------------------------------------------------------
# Users and reports
# ---------------------------------------------------------------------------
ROLE_ADMIN = "ADMIN"
ROLE_CLIENT = "CLIENT"
TOKEN_TTL_SECONDS = 3600
DEFAULT_CLIENT_NAME = "TikTok Shop Client"
FIRST_REPORT_VERSION = 1
