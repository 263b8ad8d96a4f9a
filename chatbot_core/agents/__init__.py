"""对话编排：单轮编排器 TurnOrchestrator 与交互式会话 ChatSession。"""

from chatbot_core.agents.orchestrator import TurnOrchestrator, TurnOutcome
from chatbot_core.agents.session import ChatSession

__all__ = ["ChatSession", "TurnOrchestrator", "TurnOutcome"]
