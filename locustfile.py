"""Scrape load for the exporter: overlapping /metrics requests against one target.

Run with ``locust -f locustfile.py --host http://localhost:4000``.
"""
import os
import re

from locust import HttpUser, between, task

METRICS_PATH = os.getenv("METRICS_PATH", "/metrics")

_SAMPLE = re.compile(r"^(?P<name>[a-zA-Z_:][a-zA-Z0-9_:]*)(?:\{[^}]*\})?\s+(?P<val>[0-9+.eE-]+|NaN)$")


def parse_metrics(text):
    out = {}
    for line in text.splitlines():
        m = _SAMPLE.match(line.strip())
        if m:
            out.setdefault(m.group("name"), float(m.group("val")))
    return out


class ScrapeUser(HttpUser):
    """Behaves like a Prometheus server with an aggressive scrape interval."""
    wait_time = between(float(os.getenv("SCRAPE_MIN_WAIT", "1")), float(os.getenv("SCRAPE_MAX_WAIT", "5")))

    @task
    def scrape(self):
        with self.client.get(METRICS_PATH, name="metrics", catch_response=True) as r:
            if r.status_code != 200:
                r.failure(f"status {r.status_code}")
                return
            values = parse_metrics(r.text)
            if values.get("mssql_up") != 1.0:
                r.failure(f"mssql_up={values.get('mssql_up')} error={r.headers.get('X-Error', '')}")
            else:
                r.success()
