"""
Tests for the in-memory NotificationCenter.
"""

from unittest.mock import Mock

import pytest

from toolhost_resilience.notifications import (
    Notification,
    NotificationAction,
    NotificationCenter,
    NotificationType,
)


@pytest.fixture
def center(ticking_clock) -> NotificationCenter:
    return NotificationCenter(max_notifications=3, clock=ticking_clock)


class TestShow:

    def test_assigns_id_and_default_duration(self, center) -> None:
        notification_id = center.info("Saved", "Workspace saved")
        notification = center.get_notification(notification_id)

        assert notification_id.startswith("notification_")
        assert notification.type == NotificationType.INFO
        assert notification.duration == NotificationCenter.DEFAULT_DURATION
        assert notification.persistent is False

    def test_errors_are_persistent_by_default(self, center) -> None:
        notification = center.get_notification(center.error("Oops", "Broken"))
        assert notification.persistent is True

    def test_errors_can_be_transient(self, center) -> None:
        notification = center.get_notification(center.error("Oops", "Broken", persistent=False))
        assert notification.persistent is False

    def test_explicit_notification(self, center) -> None:
        notification_id = center.show(Notification(title="Hi", message="There", id="fixed", duration=100))
        assert notification_id == "fixed"
        assert center.get_notification("fixed").duration == 100

    def test_limit_dismisses_oldest(self, center) -> None:
        """Test that only the newest max_notifications stay active."""
        ids = [center.warning(f"W{i}", "msg") for i in range(5)]
        active = [n.id for n in center.get_active_notifications()]

        assert active == ids[2:]
        assert len(center.get_all_notifications()) == 5
        assert center.get_notification(ids[0]).dismissed is True


class TestActions:

    def test_trigger_action_runs_callback_and_dismisses(self, center) -> None:
        callback = Mock(return_value="done")
        notification_id = center.error(
            "Recovery Failed", "msg",
            actions=[{"id": "reset", "label": "Reset Service", "action": callback, "style": "primary"}],
        )

        assert center.trigger_action(notification_id, "reset") == "done"
        callback.assert_called_once_with()
        assert center.get_notification(notification_id).dismissed is True

    def test_accepts_action_objects(self, center) -> None:
        action = NotificationAction(id="retry", label="Retry", action=lambda: 1)
        notification_id = center.info("t", "m", actions=[action])
        assert center.get_notification(notification_id).actions == [action]

    def test_missing_action_raises(self, center) -> None:
        notification_id = center.info("t", "m")
        with pytest.raises(KeyError):
            center.trigger_action(notification_id, "nope")
        with pytest.raises(KeyError):
            center.trigger_action("missing", "nope")


class TestUpdateAndDismiss:

    def test_update(self, center) -> None:
        notification_id = center.info("t", "m")
        assert center.update(notification_id, message="changed") is True
        assert center.get_notification(notification_id).message == "changed"
        assert center.update("missing", message="x") is False
        with pytest.raises(AttributeError):
            center.update(notification_id, colour="red")

    def test_dismiss_all(self, center) -> None:
        center.info("a", "m")
        center.success("b", "m")
        center.dismiss_all()
        assert center.get_active_notifications() == []
