#!/usr/bin/env python3
"""
Check that hanging scripts never stall the server: send N test-execute
requests in parallel, half of them running `while True: pass`.

Every request should come back within roughly the script timeout: normal
scripts with HTTP 200, hanging ones with HTTP 400 and kind "timeout".

Usage:
  python scripts/test_concurrent.py [--url URL] [--concurrent N]
  Or set env: EXECUTE_URL, CONCURRENT
"""

import argparse
import os
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed

try:
    import requests
except ImportError:
    print("Install requests: pip install requests", file=sys.stderr)
    sys.exit(1)

HANGING = "while True:\n    pass"
NORMAL = "return {'n': n * 2}"


def do_request(url: str, index: int) -> tuple[int, int, str, float]:
    """Send one execute request; return (index, status_code, kind, seconds)."""
    code = HANGING if index % 2 else NORMAL
    start = time.monotonic()
    try:
        r = requests.post(
            url,
            json={"code": code, "formData": {"n": index}},
            timeout=30,
        )
        kind = r.json().get("kind", "") if r.status_code == 400 else ""
        return (index, r.status_code, kind, time.monotonic() - start)
    except Exception:
        return (index, -1, "", time.monotonic() - start)  # -1 = error


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run hanging and normal form scripts concurrently."
    )
    parser.add_argument(
        "--url",
        default=os.environ.get(
            "EXECUTE_URL", "http://localhost:8000/api/v1/forms/test/execute"
        ),
        help="Test-execute endpoint URL",
    )
    parser.add_argument(
        "--concurrent",
        type=int,
        default=int(os.environ.get("CONCURRENT", "20")),
        help="Number of concurrent requests (default 20)",
    )
    args = parser.parse_args()

    print(f"Testing {args.concurrent} concurrent POST requests to {args.url}")
    print("---")

    results: list[tuple[int, int, str, float]] = []
    with ThreadPoolExecutor(max_workers=args.concurrent) as executor:
        futures = {
            executor.submit(do_request, args.url, i): i
            for i in range(1, args.concurrent + 1)
        }
        for fut in as_completed(futures):
            idx, status, kind, secs = fut.result()
            results.append((idx, status, kind, secs))
            status_str = str(status) if status >= 0 else "ERR"
            print(f"{idx} HTTP {status_str} {kind} {secs:.2f}s")

    results.sort(key=lambda x: x[0])
    print("---")
    ok = sum(1 for _, s, _, _ in results if s == 200)
    timeouts = sum(1 for _, s, k, _ in results if s == 400 and k == "timeout")
    err = sum(1 for _, s, _, _ in results if s < 0)
    slowest = max((secs for *_, secs in results), default=0.0)
    print(f"Done. 200={ok} timeout={timeouts} errors={err} slowest={slowest:.2f}s")


if __name__ == "__main__":
    main()
