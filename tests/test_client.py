import asyncio
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from client import ChatClient, HubInvocationError, load_preferred_name, save_preferred_name
from tests.fakes import FakeHubConnection


@pytest_asyncio.fixture
async def hub_connection():
    connection = FakeHubConnection(results={"GetUsers": ["Alice", "Bob"]})
    yield connection
    connection.close()


@pytest_asyncio.fixture
async def chat_client(hub_connection, tmp_path):
    client = ChatClient(hub_connection, quiet_period=0.05, name_file=str(tmp_path / "name"))
    listener = asyncio.create_task(client.listen())
    yield client
    hub_connection.close()
    await listener


def message_frame(name, text):
    return {
        "type": "event",
        "target": "Receive Message",
        "arguments": [{"userName": name, "message": text, "timeStamp": datetime.now(timezone.utc).isoformat()}],
    }


def typing_frame(name, is_typing):
    return {
        "type": "event",
        "target": "UserTyping",
        "arguments": [{"userName": name, "isTyping": is_typing, "timeStamp": datetime.now(timezone.utc).isoformat()}],
    }


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_join_invokes_hub_and_refreshes_roster(chat_client, hub_connection, tmp_path):
    rosters = []
    chat_client.on("UserList", rosters.append)

    assert await chat_client.join("  Alice ") is True

    assert hub_connection.sent[0]["target"] == "JoinChatRoom"
    assert hub_connection.sent[0]["arguments"] == ["Alice"]
    assert hub_connection.sent_targets() == ["JoinChatRoom", "GetUsers"]
    assert chat_client.joined is True
    assert rosters == [["Alice", "Bob"]]
    assert load_preferred_name(str(tmp_path / "name")) == "Alice"


@pytest.mark.asyncio
async def test_join_with_blank_name_does_nothing(chat_client, hub_connection):
    assert await chat_client.join("   ") is False
    assert hub_connection.sent == []
    assert chat_client.joined is False


@pytest.mark.asyncio
async def test_completion_error_raises(chat_client, hub_connection):
    hub_connection.errors["GetUsers"] = "Unknown hub method 'GetUsers'"

    with pytest.raises(HubInvocationError):
        await chat_client.get_users()


@pytest.mark.asyncio
async def test_leave_clears_joined_even_when_it_fails(chat_client, hub_connection):
    await chat_client.join("Alice")
    hub_connection.errors["LeaveChatRoom"] = "boom"

    with pytest.raises(HubInvocationError):
        await chat_client.leave()

    assert chat_client.joined is False


@pytest.mark.asyncio
async def test_events_reach_handlers(chat_client, hub_connection):
    seen = []
    chat_client.on("User Joined", lambda name: seen.append(("joined", name)))
    chat_client.on("User left", lambda name: seen.append(("left", name)))
    chat_client.on("Receive Error", lambda text: seen.append(("error", text)))

    hub_connection.push({"type": "event", "target": "User Joined", "arguments": ["Bob"]})
    hub_connection.push({"type": "event", "target": "User left", "arguments": ["Bob"]})
    hub_connection.push({"type": "event", "target": "Receive Error", "arguments": ["User info not found!"]})
    await settle()

    assert seen == [("joined", "Bob"), ("left", "Bob"), ("error", "User info not found!")]


@pytest.mark.asyncio
async def test_messages_are_parsed_and_flagged_as_mine(chat_client, hub_connection):
    await chat_client.join("Alice")
    messages = []
    chat_client.on("Receive Message", messages.append)

    hub_connection.push(message_frame("Alice", "mine"))
    hub_connection.push(message_frame("Bob", "theirs"))
    await settle()

    assert [m.text for m in messages] == ["mine", "theirs"]
    assert [chat_client.is_mine(m) for m in messages] == [True, False]


@pytest.mark.asyncio
async def test_own_typing_events_are_filtered(chat_client, hub_connection):
    await chat_client.join("Alice")
    typing = []
    chat_client.on("UserTyping", typing.append)

    hub_connection.push(typing_frame("Alice", True))
    hub_connection.push(typing_frame("Bob", True))
    await settle()

    assert [(t.display_name, t.is_typing) for t in typing] == [("Bob", True)]


@pytest.mark.asyncio
async def test_async_handlers_are_awaited_and_failures_isolated(chat_client, hub_connection):
    seen = []

    async def async_handler(name):
        seen.append(name)

    def broken_handler(name):
        raise ValueError("render failed")

    chat_client.on("User Joined", broken_handler)
    chat_client.on("User Joined", async_handler)

    hub_connection.push({"type": "event", "target": "User Joined", "arguments": ["Bob"]})
    await settle()

    assert seen == ["Bob"]


@pytest.mark.asyncio
async def test_notify_typing_before_join_sends_nothing(chat_client, hub_connection):
    await chat_client.notify_typing()

    assert hub_connection.sent == []


@pytest.mark.asyncio
async def test_typing_is_debounced(chat_client, hub_connection):
    await chat_client.join("Alice")
    hub_connection.sent.clear()

    await chat_client.notify_typing()
    await asyncio.sleep(0.02)
    await chat_client.notify_typing()
    await asyncio.sleep(0.15)

    typing = [f["arguments"][0] for f in hub_connection.sent if f["target"] == "SetTyping"]
    assert typing == [True, True, False]
    assert all("invocationId" not in f for f in hub_connection.sent)


@pytest.mark.asyncio
async def test_send_stops_typing(chat_client, hub_connection):
    await chat_client.join("Alice")
    await chat_client.notify_typing()
    hub_connection.sent.clear()

    assert await chat_client.send(" hello ") is True
    await asyncio.sleep(0.1)

    assert hub_connection.sent_targets() == ["SendMessage", "SetTyping"]
    assert hub_connection.sent[0]["arguments"] == ["hello"]
    assert hub_connection.sent[1]["arguments"] == [False]


@pytest.mark.asyncio
async def test_send_blank_does_nothing(chat_client, hub_connection):
    assert await chat_client.send("  ") is False
    assert hub_connection.sent == []


@pytest.mark.asyncio
async def test_pending_invocations_fail_when_connection_closes(tmp_path):
    connection = FakeHubConnection(auto_complete=False)
    client = ChatClient(connection, name_file=str(tmp_path / "name"))
    listener = asyncio.create_task(client.listen())

    pending = asyncio.create_task(client.get_users())
    await settle()
    connection.close()
    await listener

    with pytest.raises(ConnectionError):
        await pending


@pytest.mark.asyncio
async def test_malformed_frames_do_not_stop_the_listener(chat_client, hub_connection):
    messages = []
    chat_client.on("Receive Message", messages.append)

    hub_connection.push({"type": "event", "target": "Receive Message", "arguments": [{"bogus": 1}]})
    hub_connection.push({"type": "event", "target": "UserTyping", "arguments": ["not a dict"]})
    hub_connection.incoming.put_nowait("[1, 2]")
    hub_connection.incoming.put_nowait("not json")
    await settle()

    assert await asyncio.wait_for(chat_client.get_users(), 1.0) == ["Alice", "Bob"]
    assert messages == []

    hub_connection.push(message_frame("Bob", "still listening"))
    await settle()
    assert [m.text for m in messages] == ["still listening"]


@pytest.mark.asyncio
async def test_invoke_after_connection_closed_fails_immediately(tmp_path):
    connection = FakeHubConnection(results={"GetUsers": []})
    client = ChatClient(connection, name_file=str(tmp_path / "name"))
    listener = asyncio.create_task(client.listen())

    connection.close()
    await listener

    with pytest.raises(ConnectionError):
        await asyncio.wait_for(client.get_users(), 1.0)
    assert connection.sent == []


def test_preferred_name_cache(tmp_path):
    path = str(tmp_path / "name")

    assert load_preferred_name(path) == ""

    save_preferred_name(" Alice \n", path)

    assert load_preferred_name(path) == "Alice"
    assert ChatClient(connection=None, name_file=path).name == "Alice"
