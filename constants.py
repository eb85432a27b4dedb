import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:8080").split(",") if origin.strip()]

HUB_PATH = os.getenv("HUB_PATH", "/chatHub")
HUB_URL = os.getenv("HUB_URL", f"ws://localhost:{PORT}{HUB_PATH}")

CHAT_ROOM_GROUP = "chat-room"

# Seconds of silence after the last keystroke before the client reports "stopped typing"
TYPING_QUIET_PERIOD = 1.0

CHAT_NAME_FILE = os.path.expanduser(os.getenv("CHAT_NAME_FILE", "~/.roomchat_name"))
