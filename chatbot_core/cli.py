"""命令行入口。

子命令：
- chat [-a NAME]: 启动交互式会话（默认子命令）。
- list-agents: 列出可用人设。

退出码：0 正常退出；1 启动时人设不存在；2 配置错误；130 Ctrl-C。
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv

from chatbot_core import __version__
from chatbot_core.agents import ChatSession, TurnOrchestrator
from chatbot_core.config.settings import load_settings
from chatbot_core.domain.exceptions import ConfigurationError, PersonaNotFoundError
from chatbot_core.infrastructure.logging.logger import logger, setup_logger
from chatbot_core.prompts.personas import PersonaRegistry, build_registry
from chatbot_core.providers import create_provider

EXIT_OK = 0
EXIT_PERSONA_NOT_FOUND = 1
EXIT_CONFIG_ERROR = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatbot-llm",
        description="Interactive chat client for OpenAI-compatible LLM endpoints",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--persona-file",
        help="YAML file with extra personas (overrides PERSONA_FILE)",
    )
    subparsers = parser.add_subparsers(dest="command")

    chat = subparsers.add_parser("chat", help="Start an interactive chat session")
    chat.add_argument("-a", "--agent", help="Specify which agent to use for the conversation")

    subparsers.add_parser("list-agents", help="Display all available agents")
    return parser


def list_agents(registry: PersonaRegistry) -> int:
    print("Available agents:")
    for persona in registry.list():
        print(f"  - {persona.describe()}")
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(find_dotenv(usecwd=True))
    args = build_parser().parse_args(argv)
    command = args.command or "chat"

    try:
        settings = load_settings()
        setup_logger(settings)
        registry = build_registry(
            args.persona_file or settings.persona_file,
            strict=settings.persona_strict_aliases,
        )
        if command == "list-agents":
            return list_agents(registry)

        provider = create_provider(settings)
        session = ChatSession(TurnOrchestrator.from_settings(provider, settings), registry)
        return asyncio.run(session.start(getattr(args, "agent", None)))
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"extra": {"code": e.code, "error": e.message}})
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except PersonaNotFoundError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_PERSONA_NOT_FOUND
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
