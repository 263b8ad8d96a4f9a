"""人设注册表。

Persona 把一个规范名（及若干别名）映射到 system prompt。注册表在启动时
构造一次，之后作为不可变值显式传给编排器。

解析顺序：
1. 规范名精确匹配；
2. 按注册顺序扫描，第一个别名集合包含该名字的人设。

多个人设声明同一个别名时，默认保留“先到先得”并记录警告；
strict=True 时直接拒绝加载。
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

import yaml

from chatbot_core.domain.exceptions import ConfigurationError, PersonaNotFoundError
from chatbot_core.infrastructure.logging.logger import logger
from chatbot_core.prompts import load_system_prompt

DEFAULT_PERSONA = "default"


@dataclass(frozen=True)
class Persona:
    name: str
    prompt: str
    aliases: FrozenSet[str] = field(default_factory=frozenset)

    def describe(self) -> str:
        """用于列表展示的描述，例如 ``default (aliases: assistant, helper)``。"""

        if not self.aliases:
            return self.name
        return f"{self.name} (aliases: {', '.join(sorted(self.aliases))})"


class PersonaRegistry:
    """规范名/别名 -> Persona 的只读查找表。"""

    def __init__(self, personas: Iterable[Persona], strict: bool = False):
        self._personas: Tuple[Persona, ...] = tuple(personas)
        self._by_name: Dict[str, Persona] = {}
        for persona in self._personas:
            if persona.name in self._by_name:
                raise ConfigurationError(
                    code="DUPLICATE_PERSONA",
                    message=f"Persona {persona.name!r} is defined more than once",
                )
            self._by_name[persona.name] = persona

        collisions = self.alias_collisions()
        if collisions:
            if strict:
                raise ConfigurationError(
                    code="PERSONA_ALIAS_CONFLICT",
                    message="Conflicting persona aliases: " + "; ".join(collisions),
                )
            logger.warning("Persona alias collisions", extra={"extra": {"collisions": collisions}})

    def resolve(self, name: str) -> Persona:
        """按规范名、再按别名查找人设；找不到时抛出 PersonaNotFoundError。"""

        persona = self._by_name.get(name)
        if persona is not None:
            return persona
        for persona in self._personas:
            if name in persona.aliases:
                return persona
        raise PersonaNotFoundError(name, [p.describe() for p in self.list()])

    def list(self) -> List[Persona]:
        """全部人设；存在 default 时排在第一位，其余保持注册顺序。"""

        default = self._by_name.get(DEFAULT_PERSONA)
        if default is None:
            return list(self._personas)
        return [default] + [p for p in self._personas if p is not default]

    def names(self) -> List[str]:
        return [p.name for p in self.list()]

    def alias_collisions(self) -> List[str]:
        """描述所有冲突：别名与其他人设的规范名或别名重复。"""

        collisions: List[str] = []
        owners: Dict[str, str] = {}
        for persona in self._personas:
            for alias in sorted(persona.aliases):
                other = self._by_name.get(alias)
                if other is not None and other is not persona:
                    collisions.append(f"alias {alias!r} of {persona.name!r} shadows persona {other.name!r}")
                elif alias in owners and owners[alias] != persona.name:
                    collisions.append(f"alias {alias!r} claimed by {owners[alias]!r} and {persona.name!r}")
                else:
                    owners.setdefault(alias, persona.name)
        return collisions


def builtin_personas() -> List[Persona]:
    return [
        Persona(
            name=DEFAULT_PERSONA,
            prompt=load_system_prompt(DEFAULT_PERSONA),
            aliases=frozenset({"assistant", "helper"}),
        ),
    ]


def parse_personas(data: Any, source: str = "<persona file>") -> List[Persona]:
    """把 YAML 中的 ``name -> {prompt, aliases}``（或 ``name -> prompt``）映射解析为 Persona 列表。"""

    if not isinstance(data, dict):
        raise ConfigurationError(code="INVALID_PERSONA_FILE", message=f"{source}: expected a mapping of personas")
    personas: List[Persona] = []
    for name, spec in data.items():
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(code="INVALID_PERSONA_FILE", message=f"{source}: invalid persona name {name!r}")
        if isinstance(spec, str):
            spec = {"prompt": spec}
        if not isinstance(spec, dict):
            raise ConfigurationError(
                code="INVALID_PERSONA_FILE",
                message=f"{source}: persona {name!r} must be a mapping or a prompt string",
            )
        prompt = spec.get("prompt")
        if not isinstance(prompt, str) or not prompt.strip():
            raise ConfigurationError(
                code="INVALID_PERSONA_FILE",
                message=f"{source}: persona {name!r} needs a non-empty prompt",
            )
        aliases = spec.get("aliases") or []
        if isinstance(aliases, str):
            aliases = [aliases]
        if not isinstance(aliases, list) or not all(isinstance(a, str) and a for a in aliases):
            raise ConfigurationError(
                code="INVALID_PERSONA_FILE",
                message=f"{source}: aliases of persona {name!r} must be a list of strings",
            )
        personas.append(Persona(name=name.strip(), prompt=prompt.strip(), aliases=frozenset(aliases)))
    return personas


def load_persona_file(path: str | Path) -> List[Persona]:
    """读取外部人设文件；文件缺失或内容错误都是启动期致命错误。"""

    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigurationError(code="PERSONA_FILE_NOT_FOUND", message=f"Persona file not found: {p}")
    except OSError as e:
        raise ConfigurationError(code="PERSONA_FILE_READ_ERROR", message=f"Cannot read persona file {p}: {e}")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(code="INVALID_PERSONA_FILE", message=f"Malformed persona file {p}: {e}")
    return parse_personas(data, source=str(p))


def build_registry(
    persona_file: Optional[str | Path] = None,
    strict: bool = False,
) -> PersonaRegistry:
    """内置人设 + 可选外部文件；文件中与内置同名的人设会替换内置版本。"""

    personas = builtin_personas()
    if persona_file:
        extra = load_persona_file(persona_file)
        overrides = {p.name for p in extra}
        personas = [p for p in personas if p.name not in overrides] + extra
        logger.info(
            "Loaded persona file",
            extra={"extra": {"path": str(persona_file), "personas": [p.name for p in extra]}},
        )
    return PersonaRegistry(personas, strict=strict)
