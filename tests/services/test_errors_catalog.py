import pytest

from devrunner.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("unknown_namespace", name="staging")

    assert "Namespace `staging` does not exist." in message
    assert "Suggested action:" in message


def test_actionable_error_rejects_unknown_code():
    with pytest.raises(KeyError):
        actionable_error("does_not_exist")
