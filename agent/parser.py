"""
动作解析器 - 从模型的自由文本回复中提取唯一一条shell命令
"""
import re
from typing import List, Tuple

from .errors import ParseError
from .prompts import PARSE_ERROR_FEEDBACK
from .types import Action


# 围栏必须从行首开始，直到下一个行首的 ``` 结束；语言标记后可带其他信息
_FENCE_RE = re.compile(
    r"^[ \t]*```[ \t]*(?P<lang>[\w+-]*)[^\n]*\n(?P<body>.*?)^[ \t]*```[ \t]*$",
    re.MULTILINE | re.DOTALL,
)

SHELL_LANGUAGES = {"", "bash", "sh", "shell"}


class BashParser:
    """
    解析 ```bash 代码块

    只接受 bash / sh / shell 或无语言标记的代码块；
    出现多个时取第一个。
    """

    def find_blocks(self, text: str) -> List[Tuple[str, str]]:
        """返回所有 (语言, 内容) 代码块"""
        return [
            (match.group("lang").lower(), match.group("body"))
            for match in _FENCE_RE.finditer(text or "")
        ]

    def parse_action(self, text: str) -> Action:
        for lang, body in self.find_blocks(text):
            if lang not in SHELL_LANGUAGES:
                continue
            command = body.strip()
            if command:
                return Action(command=command)
            break
        raise ParseError(PARSE_ERROR_FEEDBACK)
