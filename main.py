"""
Bash Claw 主入口 - 终端聊天前端，支持简单模式和Agent模式
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table
from prompt_toolkit import PromptSession
from prompt_toolkit.styles import Style

from agent.errors import QueryError
from agent.querier import OpenAIQuerier
from chat.service import ChatReply, ChatService, CLEAR_COMMAND
from config_loader import AppConfig, ConfigError, load_config, save_config
from session.store import SessionStore


console = Console()
logger = logging.getLogger(__name__)

# 自定义样式
style = Style.from_dict({
    'prompt': '#00aa00 bold',
})

HELP_TEXT = """
# Available Commands

- `/exit`, `/quit` - Exit the application
- `/help` - Show this help message
- `/clear` - End the current session and start fresh
- `/mode <simple|agent>` - Switch between simple chat and agentic mode
- `/config` - Show current configuration
- `/usage` - Show token usage of the current session
"""


def setup_logging(level: str = "INFO") -> None:
    """日志输出到 rich 控制台"""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True
    )
    # 第三方库的请求日志太多
    for name in ("httpx", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)


class ConsoleSink:
    """命令输出流，写入控制台"""

    def __init__(self, console: Console):
        self.console = console

    def write(self, text: str) -> None:
        self.console.print(text, end="", style="dim", markup=False, highlight=False)

    def flush(self) -> None:
        pass


class BashClawApp:
    """Bash Claw 应用程序"""

    def __init__(self, config: AppConfig, key: str = "local"):
        self.config = config
        self.key = key
        self.store = SessionStore()
        self.service: Optional[ChatService] = None

    def print_banner(self):
        """打印欢迎信息"""
        mode = "agent" if self.config.agent.agentic_mode else "simple"
        console.print(
            f"[cyan]Bash Claw[/cyan] | LLM: {self.config.llm.provider} | "
            f"Model: {self.config.llm.current.model} | Mode: {mode}"
        )

    def setup(self) -> bool:
        """初始化设置"""
        # 检查API密钥
        if not self.config.llm.api_key:
            console.print("[red]Error: API key not found![/red]")
            console.print("\nPlease set one of the following:")
            console.print("  1. Environment variable: OPENROUTER_API_KEY, OPENAI_API_KEY or GEMINI_API_KEY")
            console.print("  2. Add llm.api_key to config.yaml")
            return False

        llm = self.config.llm
        try:
            querier = OpenAIQuerier(
                api_key=llm.api_key,
                base_url=llm.current.base_url,
                model=llm.current.model,
                provider=llm.provider,
                temperature=llm.temperature,
                max_retries=llm.max_retries
            )
        except QueryError as e:
            console.print(f"[red]Error: {e}[/red]")
            return False

        self.service = ChatService(
            querier=querier,
            store=self.store,
            config=self.config,
            output=ConsoleSink(console),
            notify=self._on_heartbeat
        )
        return True

    def _on_heartbeat(self) -> None:
        console.print("[dim]still working...[/dim]")

    async def send(self, text: str) -> ChatReply:
        """发送一条消息，Ctrl-C 取消本轮运行"""
        cancel_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, cancel_event.set)
            installed = True
        except (NotImplementedError, RuntimeError):
            installed = False
        try:
            return await self.service.handle_message(self.key, text, cancel_event)
        finally:
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

    def print_reply(self, reply: ChatReply) -> None:
        if reply.failed:
            console.print(f"[red]{reply.text}[/red]")
        else:
            console.print(Markdown(reply.text or "_(empty response)_"))
        if reply.rotated:
            console.print("[yellow]Starting a new conversation due to context limit.[/yellow]")
        if reply.reason is not None:
            console.print(
                f"[dim]{reply.steps} step(s), {reply.token_usage.total_tokens} tokens, "
                f"terminated by {reply.reason.value}[/dim]"
            )

    async def run_once(self, text: str) -> int:
        """非交互模式：处理一条消息后退出"""
        if not self.setup():
            return 1
        reply = await self.send(text)
        self.print_reply(reply)
        return 1 if reply.failed else 0

    async def run_interactive(self) -> int:
        """运行交互式会话"""
        self.print_banner()

        # 初始化
        if not self.setup():
            return 1

        if self.config.context:
            console.print("[green]✓ Context loaded[/green]")

        console.print("\n[dim]Type /help for commands, /exit to quit[/dim]\n")
        session = PromptSession(style=style)

        while True:
            try:
                user_input = await session.prompt_async("You: ", style=style)
                user_input = user_input.strip()

                if not user_input:
                    continue

                if user_input.startswith('/') and user_input != CLEAR_COMMAND:
                    if await self._handle_command(user_input):
                        break
                    continue

                reply = await self.send(user_input)
                self.print_reply(reply)
                console.print()

            except KeyboardInterrupt:
                continue
            except EOFError:
                break

        console.print("[green]Goodbye![/green]")
        return 0

    async def _handle_command(self, command: str) -> bool:
        """处理命令，返回True表示退出"""
        parts = command.split()
        cmd = parts[0].lower()
        args = parts[1:]

        if cmd in ('/exit', '/quit'):
            return True

        elif cmd == '/help':
            console.print(Markdown(HELP_TEXT))

        elif cmd == '/mode' and args:
            mode = args[0].lower()
            if mode in ('agent', 'agentic'):
                self.service.agentic_mode = True
            elif mode == 'simple':
                self.service.agentic_mode = False
            else:
                console.print(f"[red]Unknown mode: {args[0]}[/red]")
                return False
            console.print(f"[green]Mode changed to: {mode}[/green]")

        elif cmd == '/config':
            table = Table(title="Current Configuration", show_header=False)
            table.add_row("LLM Provider", self.config.llm.provider)
            table.add_row("Model", self.config.llm.current.model)
            table.add_row("Mode", "agent" if self.service.agentic_mode else "simple")
            table.add_row("Max Steps", str(self.config.agent.max_steps))
            table.add_row("Command Timeout", f"{self.config.agent.command_timeout:g}s")
            table.add_row("Working Dir", self.config.agent.working_dir or "(current)")
            table.add_row("Context Threshold", str(self.config.agent.context_threshold))
            table.add_row("History Limit", str(self.config.chat.history_limit))
            console.print(table)

        elif cmd == '/usage':
            session = await self.store.get_active_session(self.key)
            if session is None:
                console.print("[yellow]No active session[/yellow]")
            else:
                usage = await self.store.usage(session.id)
                console.print(
                    f"Session {session.id}: {len(session.messages)} messages, "
                    f"{usage.input_tokens} input / {usage.output_tokens} output / "
                    f"{usage.total_tokens} total tokens"
                )

        else:
            console.print(f"[red]Unknown command: {cmd}[/red]")

        return False


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Bash Claw - chat front-end with an agentic bash mode')
    parser.add_argument('-c', '--config', default='config.yaml', help='Config file path')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--agentic', dest='agentic', action='store_true', default=None, help='Start in agentic mode')
    mode.add_argument('--simple', dest='agentic', action='store_false', help='Start in simple chat mode')
    parser.add_argument('-k', '--key', default='local', help='Conversation key')
    parser.add_argument('-p', '--prompt', help='Send one message and exit')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    parser.add_argument('--init-config', action='store_true', help='Write the default config file and exit')
    return parser


async def async_main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    if args.init_config:
        save_config(config, args.config)
        console.print(f"[green]✓ Config written to {args.config}[/green]")
        return 0

    setup_logging("DEBUG" if args.verbose else config.logging.level)

    if args.agentic is not None:
        config.agent.agentic_mode = args.agentic

    app = BashClawApp(config, key=args.key)
    if args.prompt:
        return await app.run_once(args.prompt)
    return await app.run_interactive()


def main() -> None:
    """主入口"""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
