"""Canonical command and event codes shared by gateway, client, and tests."""

# Host -> gateway
CMD_START = 1
CMD_STOP = 2
CMD_HEARTBEAT = 3

# Gateway -> host
TYPE_STATUS = 1
TYPE_ERROR = 2
TYPE_DEVICE = 3
TYPE_HEARTBEAT = 4
