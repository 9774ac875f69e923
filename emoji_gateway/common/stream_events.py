"""Misskey streaming API constants.

All services MUST use these constants instead of hardcoding channel or event names.
"""

# Channels
CHANNEL_MAIN = "main"

# Frame types sent/received on the socket
FRAME_CONNECT = "connect"
FRAME_CHANNEL = "channel"

# Channel events
MENTION = "mention"

# Connection lifecycle (delivered to handlers like channel events)
CONNECTED = "_connected_"
DISCONNECTED = "_disconnected_"
