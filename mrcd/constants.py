# mrcd protocol constants (command tokens, replies, session states)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 12345

HISTORY_DIRNAME = "chat_history"
HISTORY_SUFFIX = ".txt"

# Client commands
CMD_BYE = "/bye"
CMD_LIST = "/list"
CMD_CREATE = "/create"
CMD_JOIN = "/join"
CMD_EXIT_ROOM = "/exit"
CMD_USERS = "/users"
CMD_ROOM_USERS = "/roomusers"
CMD_WHISPER = "/whisper"
CMD_INVITE = "/invite"

# Commands that only match when the line carries no arguments.
NO_ARG_COMMANDS = frozenset(
    (CMD_BYE, CMD_LIST, CMD_CREATE, CMD_EXIT_ROOM, CMD_USERS, CMD_ROOM_USERS)
)
ARG_COMMANDS = frozenset((CMD_JOIN, CMD_WHISPER, CMD_INVITE))

# Server -> client sentinel: the peer should answer with /join.
INVITE_SENTINEL = "invited"

# Session states
S_NEGOTIATING = "negotiating"
S_LOBBY = "lobby"
S_IN_ROOM = "in_room"
S_DISCONNECTED = "disconnected"

# Dispatcher action kinds
A_DISCONNECT = "disconnect"
A_REGISTRY_OP = "registry_op"
A_ROOM_OP = "room_op"
A_BROADCAST = "broadcast"
A_REPLY = "reply"

# Reply texts
R_NICK_PROMPT = "Please enter your nickname: "
R_NICK_TAKEN = "Nickname already in use. Please enter a different nickname: "
R_NICK_INVALID = "Invalid nickname. Please enter a different nickname: "
R_ROOM_CREATED = "Room {room_id} created."
R_ROOM_LIST_HEADER = "Current chat rooms:"
R_ROOM_LIST_ITEM = "Room ID: {room_id}"
R_JOINED = "Joined the room."
R_ALREADY_IN_ROOM = "Already in room {room_id}."
R_ROOM_NOT_FOUND = "Room ID does not exist."
R_ROOM_ID_MISSING = "Please enter the room ID."
R_ROOM_ID_NOT_NUMBER = "Room ID must be a number."
R_MOVED_TO_LOBBY = "Moved to the lobby."
R_NOT_IN_ROOM = "Not currently in a room."
R_USERS_HEADER = "Current users:"
R_ROOM_USERS_HEADER = "Users in the current room:"
R_WHISPER = "[Whisper from {sender}]: {message}"
R_WHISPER_USAGE = "Invalid whisper command. Usage: /whisper [recipient] [message]"
R_INVITE_NOTICE = "You have been invited to join room {room_id} by {sender}"
R_INVITE_USAGE = "Invalid invite command. Usage: /invite [nickname]"
R_RECIPIENT_NOT_FOUND = "User {nickname} not found or not online."

CHAT_LINE = "{nickname}: {message}"

# Nickname policy default; 0 disables length limiting.
NICK_MAX_CHARS = 32
