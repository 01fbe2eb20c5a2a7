#!/usr/bin/env python3
"""
Start the API server, run the live API tests against it, then stop the server.
Usage: python scripts/run_tests_live.py
(Run from project root with venv activated.)

Zammad credentials are removed from the server's environment so backend calls answer 503.
"""

import os
import subprocess
import sys
import time

# Add project root for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tests.http_client import get

BASE_URL = "http://127.0.0.1:8765"


def wait_for_server(timeout=10):
    for _ in range(timeout):
        try:
            r = get(f"{BASE_URL}/health")
            if r.status_code == 200:
                return True
        except OSError:
            pass
        time.sleep(1)
    return False


def main():
    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    os.chdir(root)
    server_env = {k: v for k, v in os.environ.items() if k not in ("ZAMMAD_URL", "ZAMMAD_API_TOKEN")}
    proc = subprocess.Popen(
        [sys.executable, "-m", "uvicorn", "ticket_dispatch.main:app", "--host", "127.0.0.1", "--port", "8765"],
        cwd=root,
        env=server_env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    try:
        if not wait_for_server():
            print("Server did not start in time.")
            sys.exit(1)
        env = os.environ.copy()
        env["BASE_URL"] = BASE_URL
        result = subprocess.run(
            [sys.executable, "-m", "pytest", "tests/test_api_live.py", "-v"],
            env=env,
        )
        sys.exit(result.returncode)
    finally:
        proc.terminate()
        proc.wait(timeout=5)


if __name__ == "__main__":
    main()
