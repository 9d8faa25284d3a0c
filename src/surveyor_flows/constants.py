"""Engine constants shared across the SDK.

These values are referenced by the version gate, the loader and the run
state machine.  Several can be overridden via environment variables so that
device builds can adjust limits without code changes.
"""

import os

# Supported flow spec major versions, inclusive.  Flows declaring a major
# version outside [min, max] are rejected before their graph is inspected.
# Overridable via SUPPORTED_SPEC_MAJOR_MIN / SUPPORTED_SPEC_MAJOR_MAX.
SUPPORTED_SPEC_MAJOR_MIN = int(os.getenv("SUPPORTED_SPEC_MAJOR_MIN", "11"))
SUPPORTED_SPEC_MAJOR_MAX = int(os.getenv("SUPPORTED_SPEC_MAJOR_MAX", "13"))

# Seconds a run may sit in waiting_for_async before the pending result is
# treated as missing.  The device may stay offline indefinitely, so a bound
# is always applied.  Overridable via ASYNC_RESULT_TIMEOUT.
ASYNC_RESULT_TIMEOUT = int(os.getenv("ASYNC_RESULT_TIMEOUT", "300"))

# Upper bound on consecutive steps taken by a single advance() call.  Flows
# may loop, so a run that never reaches a wait or a terminal node is
# abandoned instead of spinning forever.
MAX_STEPS_PER_ADVANCE = int(os.getenv("MAX_STEPS_PER_ADVANCE", "100"))

# Flow type codes as they appear in synced definitions.
FLOW_TYPE_SURVEY = "S"
FLOW_TYPE_VOICE = "V"
FLOW_TYPE_MESSAGE = "M"
FLOW_TYPE_MESSAGE_LEGACY = "F"

FLOW_TYPE_NAMES: dict[str, str] = {
    FLOW_TYPE_SURVEY: "Survey",
    FLOW_TYPE_VOICE: "Voice",
    FLOW_TYPE_MESSAGE: "Message",
    FLOW_TYPE_MESSAGE_LEGACY: "Message",
}

# Ruleset types that suspend the run until the surveyor enters a response.
WAIT_INPUT_TYPES: set[str] = {
    "wait_message",
    "wait_number",
    "wait_date",
    "wait_group",
    "wait_photo",
    "wait_video",
    "wait_audio",
    "wait_gps",
}

# Ruleset types that suspend the run until an asynchronous lookup returns.
WAIT_ASYNC_TYPES: set[str] = {"webhook"}

# Ruleset types evaluated immediately against the run context.
IMMEDIATE_TYPES: set[str] = {"expression", "contact_field", "flow_field"}

# Operand used when a ruleset does not declare one: the most recent response.
DEFAULT_OPERAND = "step.value"
