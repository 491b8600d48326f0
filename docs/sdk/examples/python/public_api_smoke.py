import os
import sys

import requests

base_url = os.getenv("STOREFRONT_BASE_URL", "http://localhost:8000").rstrip("/")
access_token = os.getenv("STOREFRONT_ACCESS_TOKEN")
session_id = os.getenv("STOREFRONT_CHECKOUT_SESSION_ID")

if not access_token:
    raise RuntimeError("STOREFRONT_ACCESS_TOKEN is required")

headers = {"Authorization": f"Bearer {access_token}"}


def main() -> int:
    ready_response = requests.get(f"{base_url}/ready", timeout=15)
    ready_response.raise_for_status()

    purchases_response = requests.get(
        f"{base_url}/account/purchases",
        headers=headers,
        params={"limit": 5, "offset": 0},
        timeout=15,
    )
    purchases_response.raise_for_status()

    ready = ready_response.json()
    purchases = purchases_response.json()
    print(f"Payments configured: {ready['payments_configured']}")
    print(f"Purchases total: {purchases['pagination']['total']}")
    for item in purchases["items"]:
        print(f"- {item['product_id']} ({item['access_kind']}): {item['access_url']}")

    if session_id:
        verify_response = requests.get(
            f"{base_url}/checkout/verify",
            headers=headers,
            params={"session_id": session_id},
            timeout=30,
        )
        verify_response.raise_for_status()
        verify = verify_response.json()
        statuses = ", ".join(line["status"] for line in verify["purchase_results"])
        print(f"Session {session_id}: {verify['session']['payment_status']} [{statuses}]")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except requests.RequestException as exc:
        print(f"Storefront API probe failed: {exc}", file=sys.stderr)
        raise SystemExit(1)
