"""Unit tests for LocationService lifecycle, permission gating and fix forwarding."""

import itertools
import threading
import time
from unittest.mock import MagicMock

import pytest

from geostream.location.errors import ErrorKind
from geostream.location.events import FixChannel
from geostream.location.fix import DEFAULT_SUBSCRIPTIONS, Fix, ProviderId, SubscriptionConfig
from geostream.location.location_service import LocationService
from geostream.location.permissions import (
    GrantSetPermissionSource,
    LocationPermission,
    PermissionGate,
    StaticPermissionSource,
)
from geostream.location.providers import PollingLocationManager, RawLocation
from tests.utils import FakeLocationManager, StubFixSource

BOTH = (ProviderId.SATELLITE, ProviderId.NETWORK)


def make_service(providers=BOTH, subscriptions=None, granted=(LocationPermission.COARSE, LocationPermission.FINE)):
    manager = FakeLocationManager(providers=providers)
    permissions = GrantSetPermissionSource(granted)
    channel = MagicMock(spec=FixChannel)
    service = LocationService(manager, PermissionGate(permissions), subscriptions=subscriptions, channel=channel)
    return service, manager, permissions, channel


def active_providers(service):
    return {p for p, s in service.subscriptions.items() if s.is_active}


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_default_subscriptions():
    service, _, _, _ = make_service()
    assert set(service.subscriptions) == set(BOTH)
    assert service.is_running is False
    assert active_providers(service) == set()


def test_default_polling_parameters():
    assert all(c.interval_ms == 5000 for c in DEFAULT_SUBSCRIPTIONS)
    assert all(c.min_distance_m == 0.0 for c in DEFAULT_SUBSCRIPTIONS)


def test_duplicate_provider_rejected():
    with pytest.raises(ValueError):
        make_service(subscriptions=[SubscriptionConfig(ProviderId.SATELLITE), SubscriptionConfig(ProviderId.SATELLITE)])


def test_creates_channel_when_omitted():
    service = LocationService(FakeLocationManager(), PermissionGate(StaticPermissionSource()))
    assert isinstance(service.channel, FixChannel)


# ---------------------------------------------------------------------------
# start()
# ---------------------------------------------------------------------------


def test_start_subscribes_all_providers():
    service, manager, _, _ = make_service()
    service.start()
    assert service.is_running is True
    assert active_providers(service) == set(BOTH)
    assert {call[0] for call in manager.request_calls} == set(BOTH)
    assert all(call[1:3] == (5000, 0.0) for call in manager.request_calls)


def test_start_is_idempotent():
    service, manager, _, _ = make_service()
    service.start()
    service.start()
    assert len(manager.request_calls) == 2
    assert len(manager.registrations) == 2


def test_start_isolates_unavailable_provider():
    service, manager, _, _ = make_service(providers=(ProviderId.NETWORK,))
    service.start()

    assert service.is_running is True
    assert active_providers(service) == {ProviderId.NETWORK}
    diagnostics = service.get_diagnostics()
    assert len(diagnostics) == 1
    assert diagnostics[0].provider == ProviderId.SATELLITE
    assert diagnostics[0].operation == "subscribe"
    assert diagnostics[0].kind == ErrorKind.PROVIDER_UNAVAILABLE


def test_start_isolates_invalid_parameters():
    service, manager, _, _ = make_service(
        subscriptions=[
            SubscriptionConfig(ProviderId.SATELLITE, interval_ms=-1),
            SubscriptionConfig(ProviderId.NETWORK),
        ]
    )
    service.start()
    assert active_providers(service) == {ProviderId.NETWORK}
    assert [d.kind for d in service.get_diagnostics()] == [ErrorKind.INVALID_PARAMETERS]


def test_start_survives_unexpected_provider_error():
    service, manager, _, _ = make_service()
    manager.fail_request = RuntimeError("provider crashed")
    service.start()

    assert service.is_running is True
    assert active_providers(service) == set()
    assert [d.kind for d in service.get_diagnostics()] == [ErrorKind.PROVIDER_UNAVAILABLE] * 2


def test_start_with_fine_permission_denied():
    service, manager, _, _ = make_service(granted=(LocationPermission.COARSE,))
    service.start()

    assert service.is_running is True
    assert active_providers(service) == set()
    assert manager.request_calls == []
    diagnostics = service.get_diagnostics()
    assert {d.provider for d in diagnostics} == set(BOTH)
    assert all(d.kind == ErrorKind.PERMISSION_DENIED for d in diagnostics)


def test_start_with_static_permissions_always_subscribes():
    manager = FakeLocationManager(providers=BOTH)
    service = LocationService(manager, PermissionGate(StaticPermissionSource()), channel=MagicMock())
    service.start()
    assert active_providers(service) == set(BOTH)


def test_start_again_retries_failed_providers():
    service, manager, permissions, _ = make_service(granted=())
    service.start()
    assert active_providers(service) == set()

    service.stop()
    permissions.grant(LocationPermission.COARSE)
    permissions.grant(LocationPermission.FINE)
    service.start()
    assert active_providers(service) == set(BOTH)


# ---------------------------------------------------------------------------
# stop()
# ---------------------------------------------------------------------------


def test_stop_unsubscribes_all_providers():
    service, manager, _, _ = make_service()
    service.start()
    service.stop()

    assert service.is_running is False
    assert active_providers(service) == set()
    assert manager.registrations == {}
    assert len(manager.remove_calls) == 2


def test_stop_attempts_every_provider_once_regardless_of_active_flag():
    service, manager, _, _ = make_service(providers=(ProviderId.NETWORK,))
    service.start()

    calls = {p: 0 for p in BOTH}
    for provider, subscription in service.subscriptions.items():
        original = subscription.unsubscribe

        def counting(provider=provider, original=original):
            calls[provider] += 1
            return original()

        subscription.unsubscribe = counting

    service.stop()
    assert calls == {ProviderId.SATELLITE: 1, ProviderId.NETWORK: 1}


def test_stop_without_start_is_noop():
    service, manager, _, _ = make_service()
    service.stop()
    service.stop()
    assert service.is_running is False
    assert manager.remove_calls == []
    assert service.get_diagnostics() == []


def test_stop_skips_removal_when_permission_revoked():
    service, manager, permissions, channel = make_service()
    service.start()
    permissions.revoke(LocationPermission.FINE)
    service.stop()

    assert service.is_running is False
    assert manager.remove_calls == []
    assert active_providers(service) == set()
    diagnostics = service.get_diagnostics()
    assert {(d.operation, d.kind) for d in diagnostics} == {("unsubscribe", ErrorKind.PERMISSION_DENIED)}

    # The host kept the registrations, but nothing reaches consumers anymore
    manager.deliver(ProviderId.SATELLITE, 1.0, 2.0)
    channel.publish.assert_not_called()


def test_stop_with_revoked_permission_ignores_unregistered_providers():
    service, manager, permissions, _ = make_service(granted=(LocationPermission.COARSE,))
    service.start()
    start_diagnostics = service.get_diagnostics()

    permissions.revoke(LocationPermission.COARSE)
    service.stop()

    assert service.is_running is False
    assert manager.remove_calls == []
    assert service.get_diagnostics() == start_diagnostics


def test_stop_swallows_removal_errors():
    service, manager, _, _ = make_service()
    service.start()
    manager.fail_remove = RuntimeError("remove failed")
    service.stop()

    assert service.is_running is False
    assert active_providers(service) == set()
    assert len(manager.remove_calls) == 2
    assert all(d.kind is None for d in service.get_diagnostics())


def test_restart_after_revoked_stop_does_not_duplicate_registrations():
    service, manager, permissions, _ = make_service()
    service.start()
    permissions.revoke(LocationPermission.COARSE)
    service.stop()
    permissions.grant(LocationPermission.COARSE)
    service.start()

    assert len(manager.registrations) == 2
    assert active_providers(service) == set(BOTH)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("calls", list(itertools.product(["start", "stop"], repeat=4)))
def test_running_iff_last_call_was_start(calls):
    service, _, _, _ = make_service()
    for name in calls:
        getattr(service, name)()
    assert service.is_running is (calls[-1] == "start")
    if calls[-1] == "stop":
        assert active_providers(service) == set()


def test_start_stop_start_matches_single_start():
    single, single_manager, _, _ = make_service()
    single.start()

    cycled, cycled_manager, _, _ = make_service()
    cycled.start()
    cycled.stop()
    cycled.start()

    assert active_providers(cycled) == active_providers(single)
    assert set(cycled_manager.registrations.values()) == set(single_manager.registrations.values())


def test_fresh_instance_starts_from_scratch():
    manager = FakeLocationManager(providers=BOTH)
    gate = PermissionGate(StaticPermissionSource())
    first = LocationService(manager, gate, channel=MagicMock())
    first.start()

    # The driver lost the first instance; a new one re-registers everything itself
    second = LocationService(manager, gate, channel=MagicMock())
    second.start()
    assert active_providers(second) == set(BOTH)
    assert second.get_last_fix() is None


# ---------------------------------------------------------------------------
# Fix forwarding
# ---------------------------------------------------------------------------


def test_satellite_fix_forwarded_and_cached():
    service, manager, _, channel = make_service()
    service.start()

    manager.deliver(ProviderId.SATELLITE, 1.0, 2.0, accuracy=5.0, timestamp=100)

    expected = Fix(provider=ProviderId.SATELLITE, latitude=1.0, longitude=2.0, accuracy=5.0, timestamp=100)
    channel.publish.assert_called_once_with(expected)
    assert service.subscriptions[ProviderId.SATELLITE].last_fix == expected
    assert service.get_last_fix(ProviderId.SATELLITE) == expected
    assert service.get_last_fix(ProviderId.NETWORK) is None
    assert service.last_fix_monotonic is not None

    service.stop()
    assert active_providers(service) == set()
    channel.publish.reset_mock()
    manager.deliver(ProviderId.SATELLITE, 3.0, 4.0)
    service.on_fix_received(Fix(ProviderId.SATELLITE, 3.0, 4.0, 5.0, 200))
    channel.publish.assert_not_called()


def test_fixes_pass_through_without_filtering():
    service, manager, _, channel = make_service()
    service.start()

    manager.deliver(ProviderId.SATELLITE, 1.0, 2.0, timestamp=1)
    manager.deliver(ProviderId.SATELLITE, 1.0, 2.0, timestamp=1)
    manager.deliver(ProviderId.NETWORK, 1.5, 2.5, timestamp=2)

    published = [call.args[0] for call in channel.publish.call_args_list]
    assert [f.provider for f in published] == [ProviderId.SATELLITE, ProviderId.SATELLITE, ProviderId.NETWORK]


def test_fix_dropped_while_not_running():
    service, _, _, channel = make_service()
    service.on_fix_received(Fix(ProviderId.SATELLITE, 1.0, 2.0, 5.0, 100))
    channel.publish.assert_not_called()
    assert service.get_last_fix() is None


def test_fix_from_unconfigured_provider_ignored():
    service, _, _, channel = make_service(subscriptions=[SubscriptionConfig(ProviderId.NETWORK)])
    service.start()
    service.on_fix_received(Fix(ProviderId.SATELLITE, 1.0, 2.0, 5.0, 100))
    channel.publish.assert_not_called()


def test_get_last_fix_returns_newest_across_providers():
    service, manager, _, _ = make_service()
    service.start()
    manager.deliver(ProviderId.NETWORK, 1.0, 1.0, timestamp=300)
    manager.deliver(ProviderId.SATELLITE, 2.0, 2.0, timestamp=200)
    assert service.get_last_fix().provider == ProviderId.NETWORK


def test_diagnostics_to_dict():
    service, _, _, _ = make_service(granted=())
    service.start()
    d = service.get_diagnostics()[0].to_dict()
    assert d["operation"] == "subscribe"
    assert d["kind"] == "permission_denied"
    assert d["provider"] in ("satellite", "network")


# ---------------------------------------------------------------------------
# End to end with polling providers
# ---------------------------------------------------------------------------


def test_polling_providers_end_to_end():
    manager = PollingLocationManager(
        {
            ProviderId.SATELLITE: StubFixSource([RawLocation(provider="gps", latitude=1.0, longitude=2.0)]),
            ProviderId.NETWORK: StubFixSource([RawLocation(provider="network", latitude=1.1, longitude=2.1)]),
        }
    )
    channel = FixChannel()
    received = []
    both_seen = threading.Event()

    def collect(fix):
        received.append(fix)
        if {f.provider for f in received} == set(BOTH):
            both_seen.set()

    channel.register(collect)
    service = LocationService(
        manager,
        PermissionGate(StaticPermissionSource()),
        subscriptions=[SubscriptionConfig(p, interval_ms=10) for p in BOTH],
        channel=channel,
    )
    try:
        service.start()
        assert both_seen.wait(timeout=2.0)

        service.stop()
        assert manager.registration_count() == 0
        time.sleep(0.05)
        count_after_stop = len(received)
        time.sleep(0.1)
        assert len(received) == count_after_stop
    finally:
        service.stop()
        manager.shutdown()
        channel.close()


def test_first_polled_fix_forwarded_without_waiting_an_interval():
    manager = PollingLocationManager(
        {ProviderId.SATELLITE: StubFixSource([RawLocation(provider="gps", latitude=1.0, longitude=2.0)])}
    )
    channel = FixChannel()
    first_fix = threading.Event()
    channel.register(lambda fix: first_fix.set())
    service = LocationService(
        manager,
        PermissionGate(StaticPermissionSource()),
        subscriptions=[SubscriptionConfig(ProviderId.SATELLITE, interval_ms=5000)],
        channel=channel,
    )
    try:
        service.start()
        assert first_fix.wait(timeout=1.0)
        assert service.get_last_fix(ProviderId.SATELLITE).latitude == 1.0
    finally:
        service.stop()
        manager.shutdown()
        channel.close()
