# Client -> hub invocation targets
JOIN_CHAT_ROOM = "JoinChatRoom"
SEND_MESSAGE = "SendMessage"
LEAVE_CHAT_ROOM = "LeaveChatRoom"
SET_TYPING = "SetTyping"
GET_USERS = "GetUsers"

# Hub -> client event targets
USER_JOINED_EVENT = "User Joined"
USER_LEFT_EVENT = "User left"
RECEIVE_MESSAGE_EVENT = "Receive Message"
USER_TYPING_EVENT = "UserTyping"
USER_LIST_EVENT = "UserList"
RECEIVE_ERROR_EVENT = "Receive Error"

# Frame types
INVOCATION_FRAME = "invocation"
COMPLETION_FRAME = "completion"
EVENT_FRAME = "event"

# **Example frames**
# - invocation: {"type": "invocation", "invocationId": "1", "target": "JoinChatRoom", "arguments": ["Alice"]}
# - completion: {"type": "completion", "invocationId": "1", "result": null, "error": null}
# - event:      {"type": "event", "target": "UserList", "arguments": [["Alice", "Bob"]]}
