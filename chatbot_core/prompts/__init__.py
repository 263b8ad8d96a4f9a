"""系统提示词与人设。

内置人设的 system prompt 文本按语言(locale) 保存在 prompts/<locale> 目录，
由 load_system_prompt 读取；人设注册表见 personas 模块。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(name: str = "default", locale: str = "en") -> str:
    """根据内置人设名和语言加载系统提示词文本（去掉首尾空白）。"""

    fname = PROMPTS_DIR / locale / f"{name}_system.md"
    return fname.read_text(encoding="utf-8").strip()
