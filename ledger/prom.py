"""Prometheus metric definitions.

All metric objects are created at import time so any module can increment them.
The /metrics HTTP endpoint (gateway/public_routes.py) calls
``prometheus_client.generate_latest()`` to render current values.
"""
from __future__ import annotations

from prometheus_client import Counter, Histogram

ledger_ops_total = Counter(
    "ledger_ops_total",
    "Ledger operations processed",
    ["op", "status"],
)

daily_cost_days_total = Counter(
    "ledger_daily_cost_days_total",
    "Whole days of accrual applied across all accounts",
)

purges_total = Counter(
    "ledger_purges_total",
    "Accounts purged after the deactivation window",
)

codes_redeemed_total = Counter(
    "ledger_codes_redeemed_total",
    "Single-use codes consumed",
    ["kind"],
)

codes_created_total = Counter(
    "ledger_codes_created_total",
    "Single-use codes created by admins",
    ["kind"],
)

http_latency = Histogram(
    "ledger_http_latency_seconds",
    "HTTP handler latency in seconds",
    ["route"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5],
)
