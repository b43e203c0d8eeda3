#!/usr/bin/env python3
"""Smoke test for a running Vitals Sync instance.

Works against any target: local uvicorn, Docker, deployed environment.
Intended for fixture mode (VS_ADAPTER_MODE=fixture with VS_FIXTURE_PATH set),
so syncs succeed without Google credentials.

Usage:
    python scripts/smoke_test.py                                   # default localhost:8000
    python scripts/smoke_test.py --base-url http://10.0.0.5:8000   # custom target
    python scripts/smoke_test.py --wait 120 --verbose              # longer wait, verbose
"""

import argparse
import sys
import time
import uuid

import httpx

PROBLEM_FIELDS = {"type", "title", "status", "detail", "instance"}


class CheckResult:
    def __init__(self, name: str, passed: bool, detail: str = ""):
        self.name = name
        self.passed = passed
        self.detail = detail


class SmokeRunner:
    def __init__(self, base_url: str, verbose: bool = False):
        self.client = httpx.Client(base_url=base_url, timeout=60.0)
        self.verbose = verbose
        self.results: list[CheckResult] = []
        self.user_id = f"smoke-{uuid.uuid4().hex[:8]}"
        self.all_responses: list[httpx.Response] = []

    def _record(self, name: str, passed: bool, detail: str = "") -> CheckResult:
        result = CheckResult(name, passed, detail)
        self.results.append(result)
        status = "PASS" if passed else "FAIL"
        line = f" [{status}] {name}"
        if detail and (not passed or self.verbose):
            line += f"  ({detail})"
        print(line)
        return result

    def _get(self, path: str, **params) -> httpx.Response:
        resp = self.client.get(path, params=params or None)
        self.all_responses.append(resp)
        return resp

    def _post(self, path: str, **params) -> httpx.Response:
        resp = self.client.post(path, params=params or None)
        self.all_responses.append(resp)
        return resp

    def _is_problem(self, resp: httpx.Response, status: int) -> bool:
        if resp.status_code != status:
            return False
        content_type = resp.headers.get("content-type", "")
        return "application/problem+json" in content_type and PROBLEM_FIELDS <= resp.json().keys()

    # ── Individual checks ────────────────────────────────────────

    def check_health(self) -> None:
        resp = self._get("/health")
        self._record("Health check", resp.status_code == 200 and resp.json() == {"status": "ok"})

    def check_metrics_endpoint(self) -> None:
        resp = self._get("/metrics/")
        ok = resp.status_code == 200 and "sync_samples_total" in resp.text
        self._record("Metrics endpoint available", ok, f"status={resp.status_code}")

    def check_dashboard_empty(self) -> None:
        resp = self._get(f"/api/v1/users/{self.user_id}/dashboard", name="Smoke Tester")
        ok = resp.status_code == 200
        detail = f"status={resp.status_code}"
        if ok:
            data = resp.json()["data"]
            ok = data["status"] == "no_data" and data["user_name"] == "Smoke"
            ok = ok and len(data["weekly_steps"]["points"]) == 7
            detail = f"status={data['status']}, user_name={data['user_name']}"
        self._record("Dashboard before sync is NO_DATA", ok, detail)

    def check_sync_today(self) -> None:
        resp = self._post(f"/api/v1/users/{self.user_id}/sync/today")
        ok = resp.status_code == 202
        detail = f"status={resp.status_code}"
        if ok:
            data = resp.json()["data"]
            ok = data["status"] in ("ok", "partial", "pending")
            detail = f"sync status={data['status']}, results={len(data['results'])}"
        self._record("Sync today accepted", ok, detail)

    def check_sync_idempotent(self) -> None:
        resp = self._post(f"/api/v1/users/{self.user_id}/sync/STEPS")
        ok = resp.status_code == 202
        detail = f"status={resp.status_code}"
        if ok:
            results = resp.json()["data"]["results"]
            inserted = sum(r["inserted"] for r in results)
            ok = inserted == 0
            detail = f"inserted on re-sync={inserted}"
        self._record("Re-sync of steps inserts nothing new", ok, detail)

    def check_history(self) -> None:
        resp = self._get(f"/api/v1/users/{self.user_id}/history", metric="HEART_RATE")
        ok = resp.status_code == 200
        detail = f"status={resp.status_code}"
        if ok:
            data = resp.json()["data"]
            ok = data["selection"]["metric"] == "HEART_RATE"
            ok = ok and data["status"] in ("ready", "no_data")
            detail = f"status={data['status']}, samples={len(data['samples'])}"
        self._record("Heart-rate history", ok, detail)

    def check_sleep_nights(self) -> None:
        resp = self._get(
            f"/api/v1/users/{self.user_id}/sleep/nights", start="2024-03-01", end="2024-03-07"
        )
        ok = resp.status_code == 200 and "nights" in resp.json()["data"]
        self._record("Sleep nights", ok, f"status={resp.status_code}")

    def check_error_unsupported_metric(self) -> None:
        resp = self._get(f"/api/v1/users/{self.user_id}/history", metric="BLOOD_PRESSURE")
        ok = self._is_problem(resp, 422) and "BLOOD_PRESSURE" in resp.json()["detail"]
        self._record("Error: unsupported metric", ok, f"{resp.status_code}")

    def check_error_invalid_date_range(self) -> None:
        resp = self._get(
            f"/api/v1/users/{self.user_id}/sleep/nights", start="2024-03-15", end="2024-03-01"
        )
        self._record("Error: invalid date range", self._is_problem(resp, 400), f"{resp.status_code}")

    def check_error_future_date(self) -> None:
        resp = self._get(f"/api/v1/users/{self.user_id}/history", metric="STEPS", date="2999-01-01")
        self._record("Error: future date", self._is_problem(resp, 400), f"{resp.status_code}")

    def check_request_id_header(self) -> None:
        missing = [
            f"{resp.request.method} {resp.request.url.path}"
            for resp in self.all_responses
            if "X-Request-ID" not in resp.headers and not resp.request.url.path.startswith("/metrics")
        ]
        self._record(
            "X-Request-ID present on all responses",
            not missing,
            f"missing on: {missing[:3]}" if missing else "",
        )

    def run_all(self) -> int:
        self.check_health()
        self.check_metrics_endpoint()
        self.check_dashboard_empty()
        self.check_sync_today()
        self.check_sync_idempotent()
        self.check_history()
        self.check_sleep_nights()
        self.check_error_unsupported_metric()
        self.check_error_invalid_date_range()
        self.check_error_future_date()
        self.check_request_id_header()

        passed = sum(1 for r in self.results if r.passed)
        failed = len(self.results) - passed
        print(f"\n{passed}/{len(self.results)} passed")
        return failed


# ── Entry point ──────────────────────────────────────────────────


def wait_for_health(client: httpx.Client, timeout: int) -> None:
    """Poll /health until it returns 200 or timeout expires."""
    start = time.monotonic()
    print("Waiting for /health...", end=" ", flush=True)
    while time.monotonic() - start < timeout:
        try:
            if client.get("/health").status_code == 200:
                print(f"OK ({time.monotonic() - start:.1f}s)")
                return
        except (httpx.ConnectError, httpx.ReadError, httpx.RemoteProtocolError):
            pass
        time.sleep(2)
    print(f"TIMEOUT ({time.monotonic() - start:.0f}s)")
    print("ERROR: app did not become healthy in time")
    sys.exit(1)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Smoke test for the Vitals Sync API")
    parser.add_argument("--base-url", default="http://localhost:8000", help="Target URL")
    parser.add_argument("--wait", type=int, default=60, help="Max seconds to wait for /health")
    parser.add_argument("--verbose", action="store_true", help="Print details on success too")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    print("Vitals Sync Smoke Test")
    print(f"Target: {args.base_url}")
    print()

    with httpx.Client(base_url=args.base_url, timeout=30.0) as client:
        wait_for_health(client, timeout=args.wait)

    print()
    runner = SmokeRunner(args.base_url, verbose=args.verbose)
    sys.exit(runner.run_all())


if __name__ == "__main__":
    main()
