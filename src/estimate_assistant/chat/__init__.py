"""Chat orchestration and streaming relay."""

from .orchestrator import ChatOrchestrator, ChatSubmission, PreparedRun
from .relay import StreamRelay

__all__ = ["ChatOrchestrator", "ChatSubmission", "PreparedRun", "StreamRelay"]
