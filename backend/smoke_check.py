#!/usr/bin/env python3
"""
Smoke check for a running finance API.

  FINANCE_API_URL=http://127.0.0.1:8000 FINANCE_TOKEN=<jwt> FINANCE_CENTER_ID=<id> python3 smoke_check.py

Only read endpoints are called, so it is safe against production.
"""

import json
import os
import sys

import requests

BACKEND_URL = os.getenv("FINANCE_API_URL", "http://127.0.0.1:8000")
TOKEN = os.getenv("FINANCE_TOKEN", "")
CENTER_ID = os.getenv("FINANCE_CENTER_ID", "")


def print_section(title):
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}\n")


def check(path, params=None, auth=True):
    headers = {"Authorization": f"Bearer {TOKEN}"} if auth else {}
    try:
        response = requests.get(f"{BACKEND_URL}{path}", params=params, headers=headers, timeout=10)
    except requests.RequestException as e:
        print(f"❌ {path}: connection error: {e}")
        return False
    print(f"   {path} -> {response.status_code}")
    if response.status_code == 200:
        print(json.dumps(response.json(), indent=2)[:1000])
        return True
    print(f"❌ Failed: {response.text}")
    return False


def main():
    print_section("Backend Health")
    results = [check("/api/health", auth=False)]

    if not TOKEN or not CENTER_ID:
        print("FINANCE_TOKEN / FINANCE_CENTER_ID not set, skipping authenticated checks")
    else:
        params = {"center_id": CENTER_ID}
        print_section("Finance Reports")
        results.append(check("/api/v1/finance/summaries", params))
        results.append(check("/api/v1/finance/reports/aging", params))
        results.append(check("/api/v1/finance/reports/reconciliation", params))

    passed = sum(results)
    print_section(f"{passed}/{len(results)} checks passed")
    return 0 if all(results) else 1


if __name__ == "__main__":
    sys.exit(main())
