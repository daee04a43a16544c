#!/usr/bin/env python3
"""Ask a running API to recompute company open-position counts from job posts."""

from __future__ import annotations

import argparse
import json
import os
import sys

import httpx


def request_reconcile(*, base_url: str, api_key: str, timeout_seconds: float = 60.0) -> dict[str, object]:
    response = httpx.post(
        f"{base_url.rstrip('/')}/api/companies/reconcile",
        headers={"X-API-Key": api_key},
        timeout=timeout_seconds,
    )
    response.raise_for_status()
    return response.json()


def main() -> int:
    parser = argparse.ArgumentParser(description="Trigger a company aggregate reconciliation.")
    parser.add_argument("--base-url", default=os.getenv("JB_API_BASE_URL", "http://localhost:8000"))
    parser.add_argument("--api-key", default=os.getenv("JB_ADMIN_API_KEY"))
    parser.add_argument("--timeout", type=float, default=60.0)
    args = parser.parse_args()

    if not args.api_key:
        print("--api-key or JB_ADMIN_API_KEY is required", file=sys.stderr)
        return 1

    try:
        summary = request_reconcile(base_url=args.base_url, api_key=args.api_key, timeout_seconds=args.timeout)
    except httpx.HTTPError as exc:
        print(f"reconcile failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(summary, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
