"""
测试用例 - 动作解析器
"""
import pytest

from agent.errors import ParseError, ProcessErrorKind
from agent.parser import BashParser
from agent.prompts import PARSE_ERROR_FEEDBACK
from agent.types import Action


class TestBashParser:
    """测试命令块解析"""

    def setup_method(self):
        self.parser = BashParser()

    @pytest.mark.parametrize("command", [
        "ls -la",
        "df -h /",
        "curl -s https://example.com | jq '.items[0]'",
        "echo \"TASK_COMPLETE\"",
    ])
    def test_single_block_returns_trimmed_command(self, command):
        """单个代码块返回去掉首尾空白的命令"""
        text = f"I'll run this:\n```bash\n   {command}   \n\n```\nThen we'll see."
        assert self.parser.parse_action(text) == Action(command=command)

    @pytest.mark.parametrize("lang", ["bash", "sh", "shell", "", "BASH"])
    def test_shell_labels_accepted(self, lang):
        text = f"```{lang}\nuname -a\n```"
        assert self.parser.parse_action(text).command == "uname -a"

    def test_first_block_wins(self):
        """多个代码块时使用第一个"""
        text = "```bash\necho first\n```\nor maybe\n```bash\necho second\n```"
        assert self.parser.parse_action(text).command == "echo first"

    def test_non_shell_blocks_are_skipped(self):
        text = (
            "Here is the script:\n```python\nprint('hi')\n```\n"
            "Run it with:\n```bash\npython3 script.py\n```"
        )
        assert self.parser.parse_action(text).command == "python3 script.py"

    def test_only_non_shell_block_fails(self):
        with pytest.raises(ParseError):
            self.parser.parse_action("```python\nprint('hi')\n```")

    def test_multiline_block_passed_verbatim(self):
        script = "cd /tmp\nfor f in *; do\n  echo \"$f\"\ndone"
        text = f"```bash\n{script}\n```"
        assert self.parser.parse_action(text).command == script

    def test_indented_fence(self):
        text = "Steps:\n  ```bash\n  ls\n  ```"
        assert self.parser.parse_action(text).command == "ls"

    def test_no_block_raises_recoverable_error(self):
        """没有代码块时抛出可恢复的解析错误"""
        with pytest.raises(ParseError) as exc_info:
            self.parser.parse_action("The answer is 42.")
        assert exc_info.value.kind == ProcessErrorKind.PARSE
        assert exc_info.value.message == PARSE_ERROR_FEEDBACK

    def test_inline_backticks_are_not_a_block(self):
        with pytest.raises(ParseError):
            self.parser.parse_action("Run `ls` to list files.")

    def test_empty_block_fails(self):
        with pytest.raises(ParseError):
            self.parser.parse_action("```bash\n   \n```")

    def test_unterminated_block_fails(self):
        with pytest.raises(ParseError):
            self.parser.parse_action("```bash\nls -la")

    def test_empty_and_none_text(self):
        with pytest.raises(ParseError):
            self.parser.parse_action("")
        with pytest.raises(ParseError):
            self.parser.parse_action(None)

    def test_parse_is_idempotent(self):
        """同一文本解析两次结果相同"""
        text = "```bash\ngrep -r TODO .\n```"
        assert self.parser.parse_action(text) == self.parser.parse_action(text)

    @pytest.mark.parametrize("fence_line", [
        "```bash title=check.sh",
        "```bash {.line-numbers}",
        "```sh   # run this",
    ])
    def test_info_string_after_language(self, fence_line):
        """语言标记后的附加信息不影响解析"""
        text = f"{fence_line}\nls -la\n```"
        assert self.parser.parse_action(text).command == "ls -la"

    def test_info_string_on_non_shell_block(self):
        text = "```python title=x.py\nprint(1)\n```\n```bash\npython3 x.py\n```"
        assert self.parser.parse_action(text).command == "python3 x.py"
