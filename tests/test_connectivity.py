"""Tests for the connectivity gate."""

from kakeibo.services.connectivity import ConnectivityGate, ManualConnectivitySignal


class TestConnectivityGate:
    """Tests for ConnectivityGate and ManualConnectivitySignal."""

    def test_snapshot_is_fresh_each_call(self):
        """is_online() reflects the signal at call time."""
        signal = ManualConnectivitySignal(online=True)
        gate = ConnectivityGate(signal)
        assert gate.is_online()
        signal.set_online(False)
        assert not gate.is_online()

    def test_listeners_fire_only_on_transitions(self):
        """Setting the same state twice fires once."""
        signal = ManualConnectivitySignal(online=False)
        gate = ConnectivityGate(signal)
        events = []
        gate.subscribe(events.append)

        signal.set_online(True)
        signal.set_online(True)
        signal.set_online(False)
        assert events == [True, False]

    def test_unsubscribe(self):
        signal = ManualConnectivitySignal(online=False)
        gate = ConnectivityGate(signal)
        events = []
        gate.subscribe(events.append)
        gate.unsubscribe(events.append)
        signal.set_online(True)
        assert events == []
