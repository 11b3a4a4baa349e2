from planner.main import redact_api_keys

FAKE_KEY = "AIza" + "x" * 35


def test_redact_key_query_param():
    event = {"url": "https://maps.googleapis.com/maps/api/place/details/json?place_id=abc&key=SECRET123"}
    out = redact_api_keys(None, None, event.copy())
    assert out["url"].endswith("key=REDACTED")
    assert "SECRET123" not in out["url"]


def test_redact_google_key_in_text():
    out = redact_api_keys(None, None, {"error": f"request with {FAKE_KEY} was denied"})
    assert FAKE_KEY not in out["error"]
    assert "REDACTED" in out["error"]


def test_redact_nested_structures():
    event = {"request": {"headers": {"X-Goog-Api-Key": "plain-secret"}, "urls": ["a", "b?key=zzz"]}}
    out = redact_api_keys(None, None, event)
    assert out["request"]["headers"]["X-Goog-Api-Key"] == "REDACTED"
    assert out["request"]["urls"] == ["a", "b?key=REDACTED"]


def test_redact_top_level_secret_field():
    out = redact_api_keys(None, None, {"event": "startup", "api_key": "plain-secret"})
    assert out == {"event": "startup", "api_key": "REDACTED"}
