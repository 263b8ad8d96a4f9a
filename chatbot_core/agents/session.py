"""交互式会话：终端读写循环。

ChatSession 只负责 I/O：读取用户输入、处理退出命令和空输入、把增量实时
打印到终端；每一轮的实际工作交给 TurnOrchestrator。
"""

import sys
from typing import Callable, Optional, TextIO

from chatbot_core.agents.orchestrator import TurnOrchestrator, TurnOutcome
from chatbot_core.domain.conversation import ConversationBuffer
from chatbot_core.domain.exceptions import BusinessError, ConfigurationError
from chatbot_core.domain.models import ChatMessage
from chatbot_core.infrastructure.logging.logger import logger
from chatbot_core.prompts.personas import DEFAULT_PERSONA, Persona, PersonaRegistry

EXIT_COMMANDS = frozenset({"quit", "exit"})


def is_exit_command(text: str) -> bool:
    return text.strip().lower() in EXIT_COMMANDS


class ChatSession:
    """一个人设、一段会话缓冲区、一次只执行一轮。"""

    def __init__(
        self,
        orchestrator: TurnOrchestrator,
        registry: PersonaRegistry,
        input_fn: Optional[Callable[[str], str]] = None,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
    ):
        self._orchestrator = orchestrator
        self._registry = registry
        self._input = input_fn or input
        self._out = out or sys.stdout
        self._err = err or sys.stderr
        self.buffer = ConversationBuffer()
        self.persona: Optional[Persona] = None

    def begin(self, persona_name: Optional[str] = None) -> Persona:
        """解析人设并写入 system 消息；人设不存在时抛出 PersonaNotFoundError。"""

        persona = self._registry.resolve(persona_name or DEFAULT_PERSONA)
        self.persona = persona
        self.buffer = ConversationBuffer([ChatMessage.system(persona.prompt)])
        logger.info("Chat session started", extra={"extra": {"persona": persona.name}})
        return persona

    async def start(self, persona_name: Optional[str] = None) -> int:
        persona = self.begin(persona_name)
        self._print(f"Starting chat with agent: {persona.name}")
        self._print("Type 'quit' or 'exit' to end the conversation.\n")
        await self.loop()
        return 0

    async def loop(self) -> None:
        while True:
            try:
                user_input = self._input("You: ").strip()
            except EOFError:
                self._print("")
                user_input = "exit"

            if is_exit_command(user_input):
                self._print("Goodbye!")
                break
            if not user_input:
                continue

            await self.ask(user_input)
            self._print("")

    async def ask(self, user_input: str) -> TurnOutcome:
        """执行一轮对话并把结果渲染到终端。"""

        if self.persona is None:
            raise RuntimeError("ChatSession.begin() must be called first")
        self._out.write("Assistant: ")
        self._out.flush()
        try:
            outcome = await self._orchestrator.run_turn(
                self.buffer,
                self.persona,
                user_input,
                on_delta=self._write_delta,
            )
        except ConfigurationError:
            self._print("")
            raise
        except BusinessError as e:
            self._print("")
            print(f"Error: {e.message}", file=self._err)
            print("Please try again.", file=self._err)
            return TurnOutcome(user_message=ChatMessage.user(user_input), error=e)
        self._print("")
        if outcome.error is not None:
            if outcome.delta_count:
                print(f"Streaming error: {outcome.error.message}", file=self._err)
            else:
                print(f"Error: {outcome.error.message}", file=self._err)
                print("Please try again.", file=self._err)
        return outcome

    def _write_delta(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()

    def _print(self, text: str) -> None:
        print(text, file=self._out, flush=True)
