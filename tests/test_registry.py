import pytest
from conftest import FakeTransport

from backspin.player import BarePlayer, EnhancedPlayer, PlaybackInstance, enhance_player
from backspin.registry import InstanceRegistry
from backspin.transport import TransportEvent


def test_registering_twice_keeps_one_entry(make_player, registry):
    player = make_player("a")

    assert registry.register(player) is False
    assert registry.register(BarePlayer(player.instance)) is False
    assert len(registry) == 1
    assert registry.get("a") is player
    assert "a" in registry
    assert player.instance.enhanced


def test_enhance_keeps_one_listener_set(make_player):
    transport = FakeTransport()
    first = make_player("a", transport=transport)

    for _ in range(3):
        assert make_player("a", transport=transport) is first

    assert transport.events.listener_count(TransportEvent.PLAY) == 2
    assert transport.events.listener_count(TransportEvent.RATECHANGE) == 2
    assert transport.events.listener_count(TransportEvent.LOADEDMETADATA) == 1


def test_enhancing_a_bare_entry_is_refused(make_player, registry):
    instance = PlaybackInstance("bare", FakeTransport())
    registry.register(BarePlayer(instance))

    with pytest.raises(ValueError):
        make_player("bare", transport=instance.transport)
    assert not instance.enhanced


def test_instance_enhanced_elsewhere_is_refused(make_player, rate_state, loader, renderers):
    player = make_player("a")

    with pytest.raises(ValueError):
        enhance_player(
            player.instance,
            state=rate_state,
            registry=InstanceRegistry(),
            loader=loader,
            renderer_factory=renderers,
        )


def test_for_each_other_skips_the_caller_and_isolates_failures(make_player, registry):
    a = make_player("a")
    make_player("b")
    make_player("c")
    seen = []

    def visit(player):
        seen.append(player.instance.identity)
        if player.instance.identity == "b":
            raise RuntimeError("boom")

    registry.for_each_other(a.instance, visit)

    assert seen == ["b", "c"]


def test_registry_iterates_players_of_both_kinds(make_player, registry):
    make_player("a")
    registry.register(BarePlayer(PlaybackInstance("b", FakeTransport())))

    kinds = {p.instance.identity: type(p) for p in registry}

    assert kinds == {"a": EnhancedPlayer, "b": BarePlayer}


def test_detach_drops_every_subscription(make_player):
    transport = FakeTransport()
    player = make_player("a", transport=transport)

    player.detach()

    for event in TransportEvent:
        assert transport.events.listener_count(event) == 0
