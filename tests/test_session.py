import re
import threading

from mrcd.client import ChatClient
from mrcd.config import ServerRuntimeConfig
from mrcd.constants import S_DISCONNECTED, S_IN_ROOM, S_LOBBY, S_NEGOTIATING
from mrcd.service import ChatService
from mrcd.session import ClientSession

from conftest import RecordingSink, ScriptedReader


def _session(service, lines) -> ClientSession:
    return ClientSession(service, ScriptedReader(lines), RecordingSink())


# Negotiation


def test_negotiation_accepts_free_nickname(service) -> None:
    s = _session(service, ["alice"])
    assert s.state == S_NEGOTIATING

    assert s.negotiate() is True
    assert s.nickname == "alice"
    assert s.state == S_LOBBY
    assert s.sink.lines == ["Please enter your nickname: "]
    assert service.connections.lookup("alice") is s.sink


def test_negotiation_reprompts_while_nickname_taken(service, connect) -> None:
    connect("alice")
    s = _session(service, ["alice", "alice", "alice2"])

    assert s.negotiate() is True
    assert s.nickname == "alice2"
    assert s.sink.lines == [
        "Please enter your nickname: ",
        "Nickname already in use. Please enter a different nickname: ",
        "Nickname already in use. Please enter a different nickname: ",
    ]


def test_blank_nickname_gets_anonymous_placeholder(service) -> None:
    s = _session(service, ["   "])
    assert s.negotiate() is True
    assert re.fullmatch(r"Anonymous[0-9a-f]{8}", s.nickname)
    assert s.nickname in service.connections.list_nicknames()


def test_blank_nickname_on_reprompt_also_gets_placeholder(service, connect) -> None:
    connect("bob")
    s = _session(service, ["bob", ""])
    assert s.negotiate() is True
    assert s.nickname.startswith("Anonymous")


def test_invalid_nicknames_are_rejected(service) -> None:
    s = _session(service, ["two words", "/create", "x" * 33, "ok"])
    assert s.negotiate() is True
    assert s.nickname == "ok"
    assert s.sink.lines.count("Invalid nickname. Please enter a different nickname: ") == 3


def test_nickname_is_stripped(service) -> None:
    s = _session(service, ["  carol \r"])
    assert s.negotiate() is True
    assert s.nickname == "carol"


def test_end_of_stream_or_bye_during_negotiation(service) -> None:
    s = _session(service, [])
    assert s.negotiate() is False
    assert s.nickname is None

    s = _session(service, ["/bye"])
    assert s.negotiate() is False
    assert service.connections.list_nicknames() == set()


def test_greeting_is_sent_after_nickname(tmp_path) -> None:
    cfg = ServerRuntimeConfig(history_dir=str(tmp_path), greeting="Welcome!\nBe nice.")
    s = _session(ChatService(cfg), ["alice"])
    assert s.negotiate() is True
    assert s.sink.lines[1:] == ["Welcome!", "Be nice."]


# Rooms


def test_create_joins_and_list_shows_room(connect) -> None:
    a = connect("A")
    b = connect("B")

    assert a.handle_line("/create") is True
    assert a.sink.take() == ["Room 1 created.", "Joined the room."]
    assert a.state == S_IN_ROOM
    assert a.room.members() == ["A"]

    b.handle_line("/list")
    assert b.sink.take() == ["Current chat rooms:", "Room ID: 1"]


def test_list_with_no_rooms(connect) -> None:
    a = connect("A")
    a.handle_line("/list")
    assert a.sink.take() == ["Current chat rooms:"]


def test_chat_reaches_room_and_history(service, connect) -> None:
    a = connect("A")
    b = connect("B")
    outsider = connect("C")
    a.handle_line("/create")
    b.handle_line("/join 1")
    assert b.sink.take() == ["Joined the room."]
    a.sink.take()

    a.handle_line("hello")

    assert b.sink.lines == ["A: hello"]
    assert a.sink.lines == ["A: hello"]
    assert outsider.sink.lines == []
    history = service.history.path_for(1).read_text(encoding="utf-8")
    assert history == "A: hello\n"


def test_system_notices_are_not_written_to_history(service, connect) -> None:
    a = connect("A")
    a.handle_line("/create")
    a.handle_line("/roomusers")
    a.handle_line("/exit")
    assert not service.history.path_for(1).exists()


def test_chat_survives_history_failure(tmp_path) -> None:
    cfg = ServerRuntimeConfig(history_dir=str(tmp_path / "not-created"))
    service = ChatService(cfg)
    a = _session(service, ["A"])
    a.negotiate()
    a.handle_line("/create")
    a.sink.take()

    a.handle_line("still delivered")
    assert a.sink.lines == ["A: still delivered"]
    assert service.stats.get("history_errors") == 1


def test_room_is_deleted_after_everyone_exits(service, connect) -> None:
    a = connect("A")
    b = connect("B")
    c = connect("C")
    a.handle_line("/create")
    b.handle_line("/join 1")
    a.sink.take()
    b.sink.take()

    b.handle_line("/exit")
    assert b.sink.take() == ["Moved to the lobby."]
    assert service.rooms.get(1) is not None

    a.handle_line("/exit")
    assert a.sink.take() == ["Moved to the lobby."]
    assert service.rooms.get(1) is None
    assert service.rooms.list_ids() == []

    c.handle_line("/join 1")
    assert c.sink.take() == ["Room ID does not exist."]
    assert c.state == S_LOBBY


def test_new_room_after_deletion_gets_next_id(connect) -> None:
    a = connect("A")
    a.handle_line("/create")
    a.handle_line("/exit")
    a.sink.take()

    a.handle_line("/create")
    assert a.sink.take() == ["Room 2 created.", "Joined the room."]


def test_exit_in_lobby(connect) -> None:
    a = connect("A")
    a.handle_line("/exit")
    assert a.sink.take() == ["Not currently in a room."]


def test_join_switches_rooms(service, connect) -> None:
    a = connect("A")
    b = connect("B")
    a.handle_line("/create")
    b.handle_line("/create")
    a.sink.take()
    b.sink.take()

    a.handle_line("/join 2")
    assert a.sink.take() == ["Joined the room."]
    assert service.rooms.get(1) is None
    assert service.rooms.get(2).members() == ["B", "A"]


def test_join_current_room_is_a_no_op(service, connect) -> None:
    a = connect("A")
    a.handle_line("/create")
    a.sink.take()

    a.handle_line("/join 1")
    assert a.sink.take() == ["Already in room 1."]
    assert service.rooms.get(1).members() == ["A"]


def test_join_argument_errors(connect) -> None:
    a = connect("A")
    a.handle_line("/join")
    a.handle_line("/join abc")
    a.handle_line("/join 99")
    assert a.sink.take() == [
        "Please enter the room ID.",
        "Room ID must be a number.",
        "Room ID does not exist.",
    ]


def test_join_zero_or_negative_room_id(connect) -> None:
    a = connect("A")
    a.handle_line("/join 0")
    a.handle_line("/join -5")
    assert a.sink.take() == ["Room ID does not exist.", "Room ID does not exist."]
    assert a.state == S_LOBBY


def test_failed_join_keeps_current_room(service, connect) -> None:
    a = connect("A")
    a.handle_line("/create")
    a.sink.take()

    a.handle_line("/join 42")
    assert a.sink.take() == ["Room ID does not exist."]
    assert a.room is service.rooms.get(1)


def test_create_from_a_room_leaves_it(service, connect) -> None:
    a = connect("A")
    a.handle_line("/create")
    a.handle_line("/create")
    assert a.sink.take() == [
        "Room 1 created.",
        "Joined the room.",
        "Room 2 created.",
        "Joined the room.",
    ]
    assert service.rooms.list_ids() == [2]


def test_lobby_chat_is_not_delivered(service, connect) -> None:
    a = connect("A")
    a.handle_line("anyone there?")
    assert a.sink.take() == ["Not currently in a room."]
    assert service.stats.get("msgs_broadcast") == 0


# Listings


def test_users_and_roomusers(connect) -> None:
    a = connect("carol")
    b = connect("alice")
    connect("bob")
    a.handle_line("/create")
    b.handle_line("/join 1")
    a.sink.take()

    a.handle_line("/users")
    assert a.sink.take() == ["Current users:", "alice", "bob", "carol"]

    a.handle_line("/roomusers")
    assert a.sink.take() == ["Users in the current room:", "carol", "alice"]


def test_roomusers_in_lobby(connect) -> None:
    a = connect("A")
    a.handle_line("/roomusers")
    assert a.sink.take() == ["Not currently in a room."]


# Whisper and invite


def test_whisper_reaches_only_the_recipient(connect) -> None:
    a = connect("A")
    b = connect("B")
    c = connect("C")
    a.handle_line("/create")
    c.handle_line("/join 1")
    a.sink.take()
    c.sink.take()

    a.handle_line("/whisper B psst, over   here")

    assert b.sink.lines == ["[Whisper from A]: psst, over   here"]
    assert a.sink.lines == []
    assert c.sink.lines == []


def test_whisper_errors(connect) -> None:
    a = connect("A")
    a.handle_line("/whisper nobody hi")
    a.handle_line("/whisper B")
    assert a.sink.take() == [
        "User nobody not found or not online.",
        "Invalid whisper command. Usage: /whisper [recipient] [message]",
    ]


def test_whisper_to_dead_peer_does_not_end_sender_session(service, connect) -> None:
    a = connect("A")
    b = connect("B")
    b.sink.fail = True

    assert a.handle_line("/whisper B hi") is True
    assert a.sink.lines == []
    assert service.stats.get("send_errors") == 1


def test_invite_sends_notice_and_sentinel(service, connect) -> None:
    a = connect("A")
    b = connect("B")
    a.handle_line("/create")
    a.sink.take()

    a.handle_line("/invite B")

    assert b.sink.take() == ["You have been invited to join room 1 by A", "invited"]
    assert a.sink.lines == []
    # The server only notifies; it never moves the invitee itself.
    assert b.room is None
    assert service.rooms.get(1).members() == ["A"]


def test_invited_client_joins_inviter_room(service, connect) -> None:
    a = connect("A")
    b = connect("B")
    a.handle_line("/create")
    a.handle_line("/invite B")

    client = ChatClient(b.handle_line, output=lambda line: None)
    for line in b.sink.take():
        client.handle_server_line(line)

    assert b.room is service.rooms.get(1)
    assert b.sink.take() == ["Joined the room."]
    assert service.rooms.get(1).members() == ["A", "B"]


def test_invite_errors(connect) -> None:
    a = connect("A")
    connect("B")
    a.handle_line("/invite B")
    assert a.sink.take() == ["Not currently in a room."]

    a.handle_line("/create")
    a.sink.take()
    a.handle_line("/invite nobody")
    a.handle_line("/invite")
    assert a.sink.take() == [
        "User nobody not found or not online.",
        "Invalid invite command. Usage: /invite [nickname]",
    ]


# Disconnect


def test_bye_ends_the_loop(connect) -> None:
    a = connect("A")
    assert a.handle_line("/bye") is False


def test_disconnect_cleans_up_exactly_once(service, connect) -> None:
    a = connect("A")
    b = connect("B")
    a.handle_line("/create")
    b.handle_line("/join 1")

    assert a.disconnect() is True
    assert a.disconnect() is False
    assert a.state == S_DISCONNECTED
    assert "A" not in service.connections.list_nicknames()
    assert service.rooms.get(1).members() == ["B"]
    assert service.stats.get("disconnects") == 1

    b.disconnect()
    assert service.rooms.get(1) is None


def test_run_cleans_up_after_bye(service) -> None:
    s = _session(service, ["alice", "/create", "hello", "/bye", "never read"])
    s.run()

    assert s.state == S_DISCONNECTED
    assert service.connections.list_nicknames() == set()
    assert service.rooms.list_ids() == []
    assert list(s.reader.lines) == ["never read"]


def test_run_cleans_up_after_read_error(service) -> None:
    s = _session(service, ["alice", "/create", ConnectionResetError("reset")])
    s.run()

    assert s.state == S_DISCONNECTED
    assert service.connections.lookup("alice") is None
    assert service.rooms.get(1) is None


def test_run_cleans_up_when_own_sink_fails(service) -> None:
    s = _session(service, ["alice", "/users", "/users"])
    s.sink.fail = True
    s.run()

    assert s.state == S_DISCONNECTED
    assert s.nickname is None
    assert service.connections.list_nicknames() == set()


def test_nickname_is_reusable_after_disconnect(service, connect) -> None:
    a = connect("A")
    a.disconnect()
    again = connect("A")
    assert again.nickname == "A"


def test_reused_nickname_keeps_room_membership_during_disconnect(
    service, connect, monkeypatch
) -> None:
    a = connect("A")
    b = connect("B")
    a.handle_line("/create")
    b.handle_line("/join 1")

    real_unregister = service.connections.unregister
    replacements: list[ClientSession] = []

    def unregister_then_reconnect(nickname: str) -> None:
        real_unregister(nickname)
        if nickname == "A" and not replacements:
            # The freed nickname is picked up before the old session returns.
            s = ClientSession(service, ScriptedReader(["A"]), RecordingSink(), peer="new")
            assert s.negotiate()
            s.handle_line("/join 1")
            replacements.append(s)

    monkeypatch.setattr(service.connections, "unregister", unregister_then_reconnect)
    a.disconnect()

    new_a = replacements[0]
    assert new_a.sink.take()[-1] == "Joined the room."
    assert service.rooms.get(1).members() == ["B", "A"]

    b.sink.take()
    b.handle_line("hello")
    assert new_a.sink.lines == ["B: hello"]

    b.handle_line("/exit")
    assert service.rooms.get(1) is new_a.room


# Concurrency


def _run_together(*targets) -> None:
    barrier = threading.Barrier(len(targets))
    errors: list[BaseException] = []

    def wrap(target):
        def run() -> None:
            barrier.wait()
            try:
                target()
            except BaseException as e:
                errors.append(e)

        return run

    threads = [threading.Thread(target=wrap(t)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []


def test_join_racing_last_exit_or_disconnect(service, connect) -> None:
    for i in range(150):
        owner = connect(f"owner{i}")
        joiner = connect(f"joiner{i}")
        owner.handle_line("/create")
        room_id = owner.room.room_id
        leave = owner.disconnect if i % 2 else (lambda: owner.handle_line("/exit"))

        _run_together(leave, lambda: joiner.handle_line(f"/join {room_id}"))

        room = service.rooms.get(room_id)
        if joiner.room is None:
            assert joiner.sink.take() == ["Room ID does not exist."]
            assert room is None
        else:
            assert joiner.sink.take() == ["Joined the room."]
            assert joiner.room is room
            assert room.members() == [f"joiner{i}"]
            joiner.handle_line("/exit")
        assert service.rooms.list_ids() == []

    assert service.stats.get("rooms_created") == service.stats.get("rooms_deleted") == 150


def test_join_and_exit_churn_alongside_broadcast(service, connect) -> None:
    speaker = connect("speaker")
    anchor = connect("anchor")
    speaker.handle_line("/create")
    anchor.handle_line("/join 1")
    speaker.sink.take()
    anchor.sink.take()
    churners = [connect(f"churn{i}") for i in range(4)]
    sent = [f"line {n}" for n in range(200)]

    def talk() -> None:
        for text in sent:
            speaker.handle_line(text)

    def churn(session: ClientSession) -> None:
        def run() -> None:
            for _ in range(50):
                session.handle_line("/join 1")
                session.handle_line("/exit")

        return run

    _run_together(talk, *(churn(c) for c in churners))

    expected = [f"speaker: {text}" for text in sent]
    assert speaker.sink.lines == expected
    assert anchor.sink.lines == expected
    assert service.rooms.get(1).members() == ["speaker", "anchor"]

    for c in churners:
        assert c.room is None
        seen = [line for line in c.sink.lines if line.startswith("speaker: ")]
        positions = [expected.index(line) for line in seen]
        assert positions == sorted(set(positions))
        assert c.sink.lines.count("Joined the room.") == 50

    history = service.history.path_for(1).read_text(encoding="utf-8").splitlines()
    assert history == expected
