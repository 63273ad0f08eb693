import json
import os

import httpx


def main() -> int:
    base_url = os.getenv("VERIFY_BASE_URL", "http://127.0.0.1:8000").rstrip("/")
    print(f"Checking runtime at {base_url}")
    with httpx.Client(base_url=base_url, timeout=10.0) as client:
        try:
            health = client.get("/health")
        except Exception as exc:
            print(f"[FAIL] Could not connect to service: {exc}")
            return 1

        print(f"[INFO] /health status={health.status_code}")
        if health.status_code != 200:
            print("[FAIL] /health is not healthy.")
            return 1

        version = client.get("/version")
        print(f"[INFO] /version status={version.status_code} X-App-Version={version.headers.get('X-App-Version')}")
        if version.status_code == 200:
            print(f"[OK] version payload: {json.dumps(version.json(), sort_keys=True)}")

        progress = client.get(f"/v1/uploads/{'0' * 32}/progress")
        if progress.status_code != 200 or progress.json().get("status") != "not_started":
            print(f"[FAIL] progress route unexpected: {progress.status_code} {progress.text}")
            return 2
        print("[OK] upload routes are available.")

        metrics = client.get("/metrics")
        if "fragments_accepted_total" not in metrics.text:
            print("[FAIL] /metrics does not expose upload counters.")
            return 3
        print("[OK] /metrics is available.")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
