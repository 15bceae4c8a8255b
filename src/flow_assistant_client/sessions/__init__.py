from flow_assistant_client.sessions.message_submitter import MessageSubmitter
from flow_assistant_client.sessions.session_manager import SessionManager

__all__ = [
    "MessageSubmitter",
    "SessionManager",
]
