#!/usr/bin/env python3
"""Refresh the core markets' snapshots (e.g. from cron), then print budget usage."""
import json
import os
import sys

import requests

API = os.environ.get("MARKETPULSE_API", "http://localhost:8300/api/v1")


def refresh(market_ids: list[str] | None = None) -> list[dict]:
    body = {"marketIds": market_ids} if market_ids else {}
    resp = requests.post(f"{API}/admin/rentcast/refresh-core", json=body, timeout=300)
    resp.raise_for_status()
    return resp.json()["results"]


def get_usage() -> dict:
    resp = requests.get(f"{API}/admin/usage", timeout=30)
    resp.raise_for_status()
    return resp.json()


def main():
    market_ids = sys.argv[1:] or None

    print(f"\n{'='*60}")
    print("  Refreshing core markets")
    print(f"{'='*60}\n")

    results = refresh(market_ids)
    for r in results:
        if r.get("refreshed"):
            status = "✓ refreshed"
        elif r["ok"]:
            status = "✓ cached"
        else:
            status = f"✗ {r.get('error', 'failed')}"
        print(f"{r['marketId']:<20} {status}")

    usage = get_usage()
    print(f"\nRentCast {usage['period']}: {usage['calls']}/{usage['limit']} calls, {usage['remaining']} remaining")

    with open("refresh_results.json", "w") as f:
        json.dump({"results": results, "usage": usage}, f, indent=2)

    if any(not r["ok"] for r in results):
        sys.exit(1)


if __name__ == "__main__":
    main()
