from __future__ import annotations

import logging

import pytest
from app.notifications.contracts import TransientPushProviderError
from app.notifications.error_log import ERROR_LOGGER_NAME, log_notification_error


class _Unprintable:
  def __str__(self) -> str:
    raise RuntimeError("no string form")


def _raised(error: BaseException) -> BaseException:
  try:
    raise error
  except BaseException as exc:  # noqa: BLE001
    return exc


THROWN_VALUES = [
  pytest.param(_raised(RuntimeError("db down")), id="raised-exception"),
  pytest.param(_raised(TransientPushProviderError("provider 503", status_code=503, retries=3)), id="provider-error"),
  pytest.param(ValueError("never raised"), id="unraised-exception"),
  pytest.param("plain string", id="string"),
  pytest.param({"code": 42}, id="mapping"),
  pytest.param(None, id="none"),
  pytest.param(7, id="number"),
]


@pytest.mark.parametrize("severity,level", [("info", logging.INFO), ("warning", logging.WARNING), ("error", logging.ERROR), ("critical", logging.CRITICAL)])
@pytest.mark.parametrize("error", THROWN_VALUES)
def test_every_thrown_value_produces_exactly_one_record(caplog, error, severity, level):
  caplog.set_level(logging.DEBUG, logger=ERROR_LOGGER_NAME)
  context = {"userId": "u-1", "endpoint": "https://fcm.googleapis.com/fcm/send/x"}

  returned = log_notification_error("push.deliver", error, severity, context)

  records = [r for r in caplog.records if r.name == ERROR_LOGGER_NAME]
  assert len(records) == 1
  assert records[0].levelno == level
  attached = records[0].notification_error
  assert attached is returned
  assert attached.operation == "push.deliver"
  assert attached.severity == severity
  assert attached.error is error
  assert attached.context is context
  assert attached.timestamp.tzinfo is not None


def test_stack_only_present_for_raised_exceptions():
  raised = log_notification_error("cleanup.run", _raised(RuntimeError("boom")))
  unraised = log_notification_error("cleanup.run", RuntimeError("boom"))
  plain = log_notification_error("cleanup.run", "boom")

  assert raised.stack is not None and "RuntimeError: boom" in raised.stack
  assert unraised.stack is None
  assert plain.stack is None
  assert raised.message == unraised.message == plain.message == "boom"


def test_unprintable_error_falls_back_to_repr(caplog):
  caplog.set_level(logging.ERROR, logger=ERROR_LOGGER_NAME)
  error = _Unprintable()

  record = log_notification_error("websocket.deliver", error)

  assert record.message == repr(error)
  assert record.error is error


def test_default_severity_is_error_and_context_is_optional():
  record = log_notification_error("notification.create", "failed")

  assert record.severity == "error"
  assert record.context is None


def test_unknown_severity_is_rejected():
  with pytest.raises(ValueError):
    log_notification_error("push.deliver", "failed", "fatal")  # type: ignore[arg-type]
