#!/usr/bin/env python3
"""
Example script: sign and send one orchestrator request, as the external timer does

Usage:
    CRON_SECRET=... python examples/trigger_orchestrator.py [base_url]
"""

import json
import os
import sys

import requests

# Add the parent directory to the path so we can import CronHalo modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from CronHalo.backend.routes.cron import ORCHESTRATOR_PATH
from CronHalo.security.signing import SignedRequest


def main():
    """Main example function"""
    base_url = sys.argv[1] if len(sys.argv) > 1 else os.getenv("APP_BASE_URL", "http://localhost:8000")
    secret = os.getenv("CRON_SECRET")
    if not secret:
        print("❌ CRON_SECRET environment variable not set")
        return 1

    print("⏰ CronHalo Orchestrator Trigger")
    print("=" * 50)

    signed = SignedRequest.create("GET", ORCHESTRATOR_PATH, secret)
    print(f"Timestamp: {signed.timestamp}")
    print(f"Signature: {signed.signature[:16]}...")
    print()

    try:
        response = requests.get(
            f"{base_url.rstrip('/')}{ORCHESTRATOR_PATH}",
            headers=signed.headers(secret),
            timeout=600,
        )
    except requests.RequestException as e:
        print(f"❌ Request failed: {e}")
        return 1

    print(f"HTTP {response.status_code}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)

    if response.status_code == 200:
        print("✅ Orchestrator run completed")
        return 0
    print("❌ Orchestrator run failed")
    return 1


if __name__ == "__main__":
    sys.exit(main())
