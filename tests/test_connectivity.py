"""
Tests for the ConnectivityMonitor signal.
"""

from unittest.mock import Mock

from toolhost_resilience.connectivity import ConnectivityMonitor


class TestConnectivityMonitor:

    def test_starts_online_by_default(self) -> None:
        assert ConnectivityMonitor().is_online is True
        assert ConnectivityMonitor(online=False).is_online is False

    def test_emits_only_on_transition(self) -> None:
        """Test that listeners see each transition once."""
        monitor = ConnectivityMonitor()
        listener = Mock()
        monitor.subscribe(listener)

        assert monitor.set_online(True) is False
        assert monitor.set_online(False) is True
        assert monitor.set_online(False) is False
        assert monitor.set_online(True) is True

        assert [c.args[0] for c in listener.call_args_list] == ["offline", "online"]

    def test_unsubscribe(self) -> None:
        monitor = ConnectivityMonitor()
        listener = Mock()
        unsubscribe = monitor.subscribe(listener)
        assert monitor.listener_count == 1

        unsubscribe()
        unsubscribe()
        monitor.set_online(False)

        assert monitor.listener_count == 0
        listener.assert_not_called()

    def test_failing_listener_does_not_block_others(self) -> None:
        monitor = ConnectivityMonitor()
        second = Mock()
        monitor.subscribe(Mock(side_effect=RuntimeError("listener broke")))
        monitor.subscribe(second)

        monitor.set_online(False)

        second.assert_called_once_with("offline")
        assert monitor.is_online is False
