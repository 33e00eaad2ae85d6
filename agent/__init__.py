"""Agent execution loop"""
from .types import *
from .errors import (
    AgentError, ProcessError, ProcessErrorKind, ParseError, CommandTimeoutError,
    QueryError, ExecutorError, RunCancelledError, RunError
)
from .querier import Querier, OpenAIQuerier
from .parser import BashParser
from .executor import Executor, BashExecutor
from .runner import Runner, RunnerConfig, format_observation
from .notifier import Heartbeat
