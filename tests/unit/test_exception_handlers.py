"""Unit tests for API exception sanitization behavior."""

from __future__ import annotations

from app.core.exceptions import _error_payload, _sanitize_http_detail, _sanitize_validation_errors


def test_sanitize_validation_errors_removes_input_and_serializes_exception_ctx() -> None:
  """Ensure validation errors stay JSON-serializable and redact raw request payloads."""
  errors = [{"type": "value_error", "loc": ("body", "keys", "auth"), "msg": "Value error, auth must be base64url encoded.", "input": {"auth": "secret***"}, "ctx": {"error": ValueError("auth must be base64url encoded."), "input": {"auth": "secret***"}}}]
  sanitized = _sanitize_validation_errors(errors)
  assert "input" not in sanitized[0]
  assert sanitized[0]["loc"] == ["body", "keys", "auth"]
  assert sanitized[0]["ctx"]["error"] == "ValueError: auth must be base64url encoded."
  assert "input" not in sanitized[0]["ctx"]


def test_sanitize_http_detail_drops_key_material() -> None:
  detail = {"message": "bad subscription", "keys": {"p256dh": "x"}, "nested": [{"auth": "y", "endpoint": "https://fcm.googleapis.com/fcm/send/a"}]}
  assert _sanitize_http_detail(detail) == {"message": "bad subscription", "nested": [{"endpoint": "https://fcm.googleapis.com/fcm/send/a"}]}


def test_error_payload_attaches_request_id_only_when_known() -> None:
  assert _error_payload("Notification not found") == {"detail": "Notification not found"}
  assert _error_payload("Notification not found", request_id="req-1") == {"detail": "Notification not found", "requestId": "req-1"}
