"""
配置加载器 - YAML配置文件 + 环境变量，pydantic校验
"""
import copy
import os
import re
from datetime import date
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from agent.prompts import DEFAULT_AGENT_PROMPT, DEFAULT_SIMPLE_PROMPT
from agent.querier import PROVIDER_BASE_URLS
from agent.runner import RunnerConfig


class ConfigError(Exception):
    """配置无法加载或校验失败"""


API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

# 环境变量 -> 配置路径
ENV_OVERRIDES = {
    "LLM_PROVIDER": ("llm", "provider"),
    "AGENTIC_MODE": ("agent", "agentic_mode"),
    "MAX_STEPS": ("agent", "max_steps"),
    "COMMAND_TIMEOUT": ("agent", "command_timeout"),
    "WORKING_DIR": ("agent", "working_dir"),
    "CONTEXT_THRESHOLD": ("agent", "context_threshold"),
    "HISTORY_LIMIT": ("chat", "history_limit"),
    "CONTEXT_DIR": ("context_dir",),
    "LOG_LEVEL": ("logging", "level"),
}

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, None: 1}


def parse_duration(value: Union[str, int, float]) -> float:
    """解析时长：数字为秒，或 500ms / 30s / 2m / 1h"""
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2)]


class ProviderSettings(BaseModel):
    model: str
    base_url: Optional[str] = None


class LLMSettings(BaseModel):
    provider: str = "openrouter"
    api_key: Optional[str] = None
    temperature: Optional[float] = None
    max_retries: int = Field(2, ge=0)
    openai: ProviderSettings
    gemini: ProviderSettings
    openrouter: ProviderSettings

    @field_validator("provider")
    @classmethod
    def _known_provider(cls, value: str) -> str:
        if value not in PROVIDER_BASE_URLS:
            raise ValueError(f"unknown provider {value!r}, expected one of {sorted(PROVIDER_BASE_URLS)}")
        return value

    @property
    def current(self) -> ProviderSettings:
        return getattr(self, self.provider)


class AgentSettings(BaseModel):
    agentic_mode: bool = False
    max_steps: int = Field(10, ge=1)
    command_timeout: float = 30.0
    working_dir: Optional[str] = None
    context_threshold: int = Field(8000, ge=0)
    max_observation_length: int = Field(3000, ge=0)
    heartbeat_interval: float = Field(4.0, gt=0)

    @field_validator("command_timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> float:
        return parse_duration(value)


class ChatSettings(BaseModel):
    history_limit: int = Field(10, ge=1)


class PromptSettings(BaseModel):
    simple: str = DEFAULT_SIMPLE_PROMPT
    agent: str = DEFAULT_AGENT_PROMPT


class LoggingSettings(BaseModel):
    level: str = "INFO"


class AppConfig(BaseModel):
    """应用配置"""
    llm: LLMSettings
    agent: AgentSettings = AgentSettings()
    chat: ChatSettings = ChatSettings()
    prompts: PromptSettings = PromptSettings()
    context_dir: str = ".context"
    logging: LoggingSettings = LoggingSettings()

    # 从 context_dir/*.md 加载，不写入配置文件
    context: str = Field("", exclude=True)

    def agent_prompt(self, today: Optional[date] = None) -> str:
        """Agent提示词：日期 + 提示词 + 上下文"""
        today = today or date.today()
        prompt = f"Today's date: {today:%Y-%m-%d}\n\n{self.prompts.agent}"
        return prompt + self._context_section()

    def simple_prompt(self) -> str:
        return self.prompts.simple + self._context_section()

    def _context_section(self) -> str:
        if not self.context:
            return ""
        return f"\n\n## Available Tools & Context\n\n{self.context}"

    def runner_config(self, today: Optional[date] = None) -> RunnerConfig:
        return RunnerConfig(
            max_steps=self.agent.max_steps,
            command_timeout=self.agent.command_timeout,
            working_dir=self.agent.working_dir,
            system_prompt=self.agent_prompt(today),
            context_threshold=self.agent.context_threshold,
            max_observation_length=self.agent.max_observation_length
        )


def load_config(config_path: str = "config.yaml", env: Optional[Dict[str, str]] = None) -> AppConfig:
    """加载配置文件"""
    env = os.environ if env is None else env
    config = get_default_config()

    if os.path.exists(config_path):
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                user_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"failed to read {config_path}: {e}") from e
        if user_config:
            if not isinstance(user_config, dict):
                raise ConfigError(f"{config_path} must contain a mapping")
            # 合并配置
            config = deep_merge(config, user_config)

    apply_env_overrides(config, env)

    # 空提示词使用默认值
    defaults = get_default_config()['prompts']
    prompts = config.get('prompts') or {}
    for key, value in defaults.items():
        if not prompts.get(key):
            prompts[key] = value
    config['prompts'] = prompts

    # 从环境变量读取API密钥
    llm = config['llm']
    if not llm.get('api_key'):
        env_name = API_KEY_ENV.get(llm.get('provider'))
        if env_name:
            llm['api_key'] = env.get(env_name)

    # 展开路径中的 ~
    if config['agent'].get('working_dir'):
        config['agent']['working_dir'] = os.path.expanduser(config['agent']['working_dir'])
    config['context_dir'] = os.path.expanduser(config['context_dir'])

    try:
        app_config = AppConfig.model_validate(config)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e

    app_config.context = load_context(app_config.context_dir)
    return app_config


def apply_env_overrides(config: Dict[str, Any], env: Dict[str, str]) -> None:
    """环境变量覆盖配置项"""
    for name, path in ENV_OVERRIDES.items():
        value = env.get(name)
        if value is None or value == "":
            continue
        target = config
        for part in path[:-1]:
            target = target.setdefault(part, {})
        target[path[-1]] = value

    # 模型和地址作用于当前提供商
    provider = config['llm'].get('provider')
    for name, key in (("LLM_MODEL", "model"), ("LLM_BASE_URL", "base_url")):
        value = env.get(name)
        if value and provider in API_KEY_ENV:
            config['llm'].setdefault(provider, {})[key] = value


def load_context(context_dir: str) -> str:
    """读取上下文目录下所有 .md 文件并拼接"""
    directory = Path(context_dir)
    if not directory.is_dir():
        return ""

    parts = []
    for file in sorted(directory.glob("*.md")):
        try:
            parts.append(file.read_text(encoding='utf-8'))
        except OSError as e:
            raise ConfigError(f"failed to read context file {file}: {e}") from e

    return "\n\n---\n\n".join(parts)


def get_default_config() -> Dict[str, Any]:
    """获取默认配置"""
    return {
        'llm': {
            'provider': 'openrouter',
            'api_key': None,
            'temperature': None,
            'max_retries': 2,
            'openai': {
                'model': 'gpt-4o-mini',
                'base_url': None
            },
            'gemini': {
                'model': 'gemini-2.0-flash',
                'base_url': PROVIDER_BASE_URLS['gemini']
            },
            'openrouter': {
                'model': 'anthropic/claude-3.5-sonnet',
                'base_url': PROVIDER_BASE_URLS['openrouter']
            }
        },
        'agent': {
            'agentic_mode': False,
            'max_steps': 10,
            'command_timeout': '30s',
            'working_dir': None,
            'context_threshold': 8000,
            'max_observation_length': 3000,
            'heartbeat_interval': 4
        },
        'chat': {
            'history_limit': 10
        },
        'prompts': {
            'simple': DEFAULT_SIMPLE_PROMPT,
            'agent': DEFAULT_AGENT_PROMPT
        },
        'context_dir': '.context',
        'logging': {
            'level': 'INFO'
        }
    }


def deep_merge(base: Dict, update: Dict) -> Dict:
    """深度合并两个字典"""
    result = copy.deepcopy(base)
    for key, value in update.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def save_config(config: AppConfig, config_path: str = "config.yaml") -> None:
    """保存配置到文件（不写入API密钥）"""
    data = config.model_dump(mode='json')
    data['llm']['api_key'] = None
    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
