import json
from pathlib import Path

from storefront.main import app


def test_openapi_paths_snapshot():
    snapshot_path = Path(__file__).parent / "snapshots" / "openapi_paths_snapshot.json"
    expected_paths = json.loads(snapshot_path.read_text(encoding="utf-8"))
    actual_paths = sorted(app.openapi()["paths"].keys())
    assert actual_paths == expected_paths


def test_openapi_documents_error_envelope_for_checkout():
    schema = app.openapi()
    verify_responses = schema["paths"]["/checkout/verify"]["get"]["responses"]
    assert {"400", "404", "502", "503"}.issubset(verify_responses.keys())
    assert "ErrorOut" in schema["components"]["schemas"]


def test_openapi_lists_domain_error_codes_per_status():
    schema = app.openapi()
    register_responses = schema["paths"]["/auth/register"]["post"]["responses"]
    assert "`email_already_registered`" in register_responses["409"]["description"]

    login_responses = schema["paths"]["/auth/login"]["post"]["responses"]
    assert "`invalid_credentials`" in login_responses["401"]["description"]
    assert "`rate_limited`" in login_responses["429"]["description"]


def test_health_and_readiness_probes(test_context):
    client, _, _ = test_context

    health = client.get("/health")
    assert health.status_code == 200, health.text
    assert health.json() == {"ok": True}

    ready = client.get("/ready")
    assert ready.status_code == 200, ready.text
    assert ready.json()["database"] is True
    assert ready.headers["X-Request-ID"]
