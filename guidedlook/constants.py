GUIDED_CREATION_MODE = "guided_creation"

WORKFLOW_ACTIONS = frozenset(
    {
        "start",
        "submit",
        "select_strategy",
        "confirm_generate",
        "confirm_edit",
        "confirm_tryon",
        "cancel",
        "toggle_autosave",
        "request_outfit",
        "request_edit",
        "upload_selfie",
        "request_tryon",
        "save_generated_item",
    }
)

CONFIRMING_STATUSES = frozenset({"confirming", "tryon_confirming"})
IN_PROGRESS_STATUSES = frozenset({"generating", "editing", "tryon_generating"})

# status a pending action waits in, and the status its claim moves to
CONFIRMING_STATUS_BY_ACTION = {
    "generate": "confirming",
    "edit": "confirming",
    "tryon": "tryon_confirming",
}
RUNNING_STATUS_BY_ACTION = {
    "generate": "generating",
    "edit": "editing",
    "tryon": "tryon_generating",
}
CONFIRM_ACTIONS = {
    "confirm_generate": "generate",
    "confirm_edit": "edit",
    "confirm_tryon": "tryon",
}

CHAT_RESPONSE_KIND = "chat"
WORKFLOW_MODEL_NAME = "guided-look-workflow"
DEFAULT_COLOR_HEX = "#000000"
ALL_SEASONS = ["spring", "summer", "fall", "winter"]
