STATE_DIR_NAME = ".ops_board"
CONFIG_FILE = "config.yaml"
TASKS_FILE = "tasks.yaml"
STAGES_FILE = "stages.yaml"
NOTIFICATIONS_FILE = "notifications.yaml"
EVENTS_FILE = "board_events.jsonl"
LOCK_FILE = ".lock"

WINDOWS_LOCK_BYTES = 4096

# Per-user notification feed keeps only the most recent entries.
NOTIFICATION_FEED_LIMIT = 50

MISSING_DEPENDENCY_LOCKED = "locked"
MISSING_DEPENDENCY_SATISFIED = "satisfied"
MISSING_DEPENDENCY_POLICIES = {MISSING_DEPENDENCY_LOCKED, MISSING_DEPENDENCY_SATISFIED}

CYCLE_POLICY_TOLERATE = "tolerate"
CYCLE_POLICY_REJECT = "reject"
CYCLE_POLICIES = {CYCLE_POLICY_TOLERATE, CYCLE_POLICY_REJECT}

DEFAULT_STAGES = (
    {"name": "To Do", "order": 1, "description": "Planned tasks that have not been started yet."},
    {"name": "In Progress", "order": 2, "description": "Tasks that are actively being worked on."},
    {"name": "Done", "order": 3, "description": "Tasks that were finished and delivered."},
)

TEMPLATE_TASK_ASSIGNED = "task_assigned"
TEMPLATE_ASSET_ASSIGNED = "asset_assigned"

DEFAULT_TEMPLATES = {
    TEMPLATE_TASK_ASSIGNED: {
        "title": "New task assigned",
        "message": 'You were assigned to the task "{{subjectLabel}}"{{projectSuffix}}.',
        "link": "/projects?projectId={{projectId}}&taskId={{subjectId}}",
    },
    TEMPLATE_ASSET_ASSIGNED: {
        "title": "Asset assigned",
        "message": 'The asset "{{subjectLabel}}" is now under your responsibility.',
        "link": "/assets?assetId={{subjectId}}",
    },
}
