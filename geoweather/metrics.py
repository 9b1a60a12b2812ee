from __future__ import annotations

from prometheus_client import Counter, Histogram

weather_provider_requests_total = Counter(
    "geoweather_provider_requests_total",
    "Total weather and geocoding provider requests",
    labelnames=["provider", "endpoint"],
)

weather_provider_errors_total = Counter(
    "geoweather_provider_errors_total",
    "Total provider request errors",
    labelnames=["provider", "endpoint", "error_type"],
)

weather_provider_latency_seconds = Histogram(
    "geoweather_provider_latency_seconds",
    "Latency of provider requests",
    labelnames=["provider", "endpoint"],
    buckets=(0.1, 0.3, 0.5, 1, 2, 5, 10, 20, 30),
)

location_events_total = Counter(
    "geoweather_location_events_total",
    "Position stream events seen during acquisition",
    labelnames=["kind"],
)

location_outcomes_total = Counter(
    "geoweather_location_outcomes_total",
    "Terminal outcomes of location acquisition sessions",
    labelnames=["outcome"],
)

pipeline_runs_total = Counter(
    "geoweather_pipeline_runs_total",
    "Completed weather pipeline runs",
    labelnames=["outcome"],
)
