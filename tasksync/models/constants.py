"""Constants for tasksync.

This module centralizes collection names and default values used throughout the application.
"""

# Collections
USERS_COLLECTION = "users"
TASKS_COLLECTION = "tasks"

# Store defaults
DEFAULT_DB_NAME = "taskManagerDB"
DEFAULT_DB_HOST = "cluster.mongodb.net"
DEFAULT_DB_TIMEOUT_MS = 5000

# Realtime
WELCOME_MESSAGE = "Welcome to the Task Manager realtime channel"
WELCOME_EVENT = "welcome"
TASK_UPDATE_EVENT = "taskUpdate"
DEFAULT_CLIENT_QUEUE_SIZE = 100

# Bridge retry
DEFAULT_BRIDGE_BACKOFF_SEC = 1.0
DEFAULT_BRIDGE_BACKOFF_MAX_SEC = 30.0

# Mutable task fields (update only touches these)
TASK_MUTABLE_FIELDS = ("title", "description", "category")

# Indexes per collection: (field, unique)
STORE_INDEXES = {
    USERS_COLLECTION: [("externalId", True)],
    TASKS_COLLECTION: [("ownerId", False)],
}
