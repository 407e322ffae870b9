# CampusNet relay protocol constants (message tags and field names)

DEFAULT_PORT = 3000
DEFAULT_WS_PATH = "/ws"

# Addresses starting with this prefix are rooms (delivered to everyone).
ROOM_PREFIX = "room:"

# Inbound message types
T_LOGIN = "login"
T_MESSAGE = "message"
T_ANNOUNCEMENT = "announcement"
T_WHO = "who"
T_FILE_META = "fileMeta"
T_FILE_CHUNK = "fileChunk"

INBOUND_TYPES = frozenset(
    {T_LOGIN, T_MESSAGE, T_ANNOUNCEMENT, T_WHO, T_FILE_META, T_FILE_CHUNK}
)

# Outbound-only message types
T_LOGIN_ACK = "loginAck"
T_PRESENCE = "presence"
T_ERROR = "error"

PRESENCE_ONLINE = "online"

# Envelope field names
F_TYPE = "type"
F_FROM = "from"
F_TO = "to"
F_TS = "ts"
F_USER_ID = "userId"
F_DISPLAY_NAME = "displayName"

# loginAck rejection reasons
R_MISSING_USER_ID = "missing_userId"
R_USER_ID_IN_USE = "userId_in_use"

# Duplicate login policies
DUP_REPLACE = "replace"
DUP_REJECT = "reject"
DUPLICATE_LOGIN_POLICIES = (DUP_REPLACE, DUP_REJECT)

# Close code sent to a connection displaced by a newer login (private range).
CLOSE_DISPLACED = 4001

# Wire formats
WIRE_JSON = "json"
WIRE_CBOR = "cbor"

# Component loggers, campusnet.<name>; [logging.levels] keys.
COMPONENT_LOGGERS = ("relay", "router", "session", "delivery", "presence", "files")
