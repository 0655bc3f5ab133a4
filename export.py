# link-analytics-service/export.py
"""
CSV rendering of an analytics export.

Layout (UTF-8 with BOM):

    === TIME SERIES DATA ===
    Date,Clicks + Scans
    2025-08-01,3
    Total,3
    <blank>
    === DEVICE STATISTICS ===
    Device Type,Count,Percentage
    ...
    === EXPORT METADATA ===
"""
import csv
import io
from typing import Dict, List

BOM = "\ufeff"

TIME_SERIES_TITLE = "=== TIME SERIES DATA ==="
METADATA_TITLE = "=== EXPORT METADATA ==="

BREAKDOWN_SECTIONS = [
    ("device_stats", "=== DEVICE STATISTICS ===", "Device Type", "device_type"),
    ("referrer_stats", "=== REFERRER STATISTICS ===", "Referrer", "referrer"),
    ("country_stats", "=== COUNTRY STATISTICS ===", "Country", "country"),
]


def format_percentage(value) -> str:
    return f"{value:g}%"


def render_csv(export_data: dict) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    time_series = export_data.get("time_series")
    if time_series:
        writer.writerow([TIME_SERIES_TITLE])
        writer.writerow(["Date", "Clicks + Scans"])
        for item in time_series:
            writer.writerow([item["date"], item["count"]])
        writer.writerow(["Total", sum(item["count"] for item in time_series)])
        writer.writerow([])

    for key, title, label_header, label_key in BREAKDOWN_SECTIONS:
        stats = export_data.get(key)
        if not stats or not stats.get("breakdown"):
            continue
        writer.writerow([title])
        writer.writerow([label_header, "Count", "Percentage"])
        for item in stats["breakdown"]:
            writer.writerow([item[label_key], item["count"], format_percentage(item["percentage"])])
        writer.writerow(["Total", stats["total"], "100%"])
        writer.writerow([])

    fresh = export_data.get("cache_info", {}).get("fresh_request", False)
    writer.writerow([METADATA_TITLE])
    writer.writerow(["Exported At", export_data.get("exported_at", "")])
    writer.writerow(["Period", export_data.get("period", "N/A")])
    writer.writerow(["Generated By", "Analytics API"])
    writer.writerow(["Cache Status", "Fresh Data" if fresh else "Cached Data"])

    return BOM + buffer.getvalue()


def export_filename(period: str, timestamp: str) -> str:
    return f"analytics_export_{period}_{timestamp}.csv"


def parse_time_series_block(text: str) -> List[Dict]:
    """
    Reads the time-series block of a CSV export back into [{date, count}].
    """
    rows = list(csv.reader(io.StringIO(text.lstrip(BOM))))
    series: List[Dict] = []
    in_block = False
    for row in rows:
        if not in_block:
            in_block = row == [TIME_SERIES_TITLE]
            continue
        if not row or row[0] == "Total":
            break
        if row == ["Date", "Clicks + Scans"]:
            continue
        series.append({"date": row[0], "count": int(row[1])})
    return series
