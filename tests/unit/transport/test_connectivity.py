# tests/unit/transport/test_connectivity.py
"""Tests for ManualConnectivity."""

from __future__ import annotations

from beacon.connectivity import ConnectivityObserver, ManualConnectivity


class TestManualConnectivity:
    def test_satisfies_observer_protocol(self) -> None:
        assert isinstance(ManualConnectivity(), ConnectivityObserver)

    def test_callbacks_fire_only_on_transitions(self) -> None:
        connectivity = ManualConnectivity(online=True)
        seen: list[bool] = []
        connectivity.on_connectivity_change(seen.append)

        connectivity.set_online(True)
        connectivity.set_online(False)
        connectivity.set_online(False)
        connectivity.set_online(True)

        assert seen == [False, True]
        assert connectivity.is_online

    def test_unsubscribe_stops_notifications(self) -> None:
        connectivity = ManualConnectivity()
        seen: list[bool] = []
        unsubscribe = connectivity.on_connectivity_change(seen.append)

        unsubscribe()
        unsubscribe()
        connectivity.set_online(False)

        assert seen == []

    def test_raising_callback_does_not_block_others(self) -> None:
        connectivity = ManualConnectivity()
        seen: list[bool] = []

        def broken(online: bool) -> None:
            raise RuntimeError("listener bug")

        connectivity.on_connectivity_change(broken)
        connectivity.on_connectivity_change(seen.append)
        connectivity.set_online(False)

        assert seen == [False]
