# sigrelay protocol constants (roles, event types, store layout)

# Roles
ROLE_HOST = "host"
ROLE_GUEST = "guest"

# Older clients send "i" for the host role.
ROLE_ALIASES = {
    "host": ROLE_HOST,
    "i": ROLE_HOST,
    "guest": ROLE_GUEST,
}

# Sender label on messages the host sends to guests
HOST_SENDER = "i"

# Handshake query parameters
Q_ID = "id"
Q_ROLE = "role"
Q_PWD = "pwd"

# Inbound event types
T_VERIFY_REQUEST = "verifyRequest"
T_ALLOW_GUEST = "allowGuest"
T_REJECT_GUEST = "rejectGuest"
T_REMOVE_GUEST = "removeGuest"
T_MESSAGE = "message"

# Outbound event types
T_LOGIN_FAIL = "loginFail"
T_OFFLINE_MESSAGES = "offlineMessages"
T_PERMISSIONS_LIST = "permissionsList"
T_VERIFY_PASS = "verifyPass"
T_VERIFY_REJECT = "verifyReject"
T_ERROR = "error"

# Event field names
F_TYPE = "type"
F_GUEST_ID = "guestId"
F_FROM = "from"
F_CONTENT = "content"
F_TIME = "time"
F_TO = "to"
F_NICKNAME = "nickname"

# Store namespaces, each keyed by host id
NS_CREDENTIAL = "credential"
NS_MAILBOX = "mailbox"
NS_ALLOWED = "allowed"
NS_PENDING = "pending"

# Close codes
CLOSE_POLICY_VIOLATION = 1008
CLOSE_INTERNAL_ERROR = 1011

# Client-facing texts. Existing clients match on these strings.
TEXT_BAD_PASSWORD = "密码错误"
TEXT_MALFORMED = "消息格式错误"
TEXT_NOT_PERMITTED = "未获得主人允许"
TEXT_MISSING_PARAMS = "缺少ID或角色参数"
TEXT_UNKNOWN_ROLE = "未知角色"
TEXT_RUNNING = "信令服务器运行中"

# Guest notification policies for allowGuest/rejectGuest
NOTIFY_ANY = "any"
NOTIFY_ADDRESSED = "addressed"
