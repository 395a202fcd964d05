import asyncio

from backspin.keyboard import CommandHandler
from backspin.reverse import ReverseState


def test_typed_rate_goes_through_the_field(make_player, store):
    player = make_player()
    events = []
    handler = CommandHandler([player], print_event=events.append)

    for char in "2.5":
        handler.type_char(char)
    asyncio.run(handler.submit_rate())

    assert player.instance.transport.playback_rate == 2.5
    assert store.writes == [2.5]
    assert events[-1] == "a: 2.5×"


def test_malformed_typed_rate_is_ignored(make_player, store):
    player = make_player()
    events = []
    handler = CommandHandler([player], print_event=events.append)

    for char in "1..2":
        handler.type_char(char)
    asyncio.run(handler.submit_rate())

    assert player.instance.transport.playback_rate == 1.0
    assert store.writes == []
    assert events[-1] == "Ignored rate '1..2'"


def test_commands_follow_the_selection(make_player):
    a = make_player("a")
    b = make_player("b")
    handler = CommandHandler([a, b])

    async def scenario():
        await handler.select(1)
        await handler.change_rate(1)
        await handler.apply_to_all()
        await handler.toggle_reverse()
        await asyncio.gather(*handler._tasks)
        assert b.engine.state is ReverseState.REVERSING
        b.detach()

    asyncio.run(scenario())

    assert b.instance.transport.playback_rate == 2
    assert a.instance.transport.playback_rate == 2
