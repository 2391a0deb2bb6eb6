"""Runtime settings read from the environment (and a .env file at the repo root).

    LLM_PROVIDER     openai | anthropic                    (openai)
    LLM_API_KEY      provider API key                      ("")
    LLM_BASE_URL     override the provider base URL        ("")
    LLM_PROXY_URL    send every request to this proxy     ("")
    LLM_TIMEOUT      HTTP timeout in seconds               (120)
    GM_MODEL         model for GM narration/resolution     (gpt-4o-mini)
    GM_TEMPERATURE                                         (0.9)
    GM_MAX_TOKENS                                          (2048)
    TURN_DELAY       seconds between AI character turns    (0.5)
    ROUND_DELAY      seconds before the next round starts  (1.0)
    LOG_LEVEL                                              (INFO)
"""

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel

ENV_FILE = Path(__file__).parent.parent / ".env"


class Settings(BaseModel):
    llm_provider: Literal["openai", "anthropic"] = "openai"
    llm_api_key: str = ""
    llm_base_url: str = ""
    llm_proxy_url: str = ""
    llm_timeout: float = 120.0
    gm_model: str = "gpt-4o-mini"
    gm_temperature: float = 0.9
    gm_max_tokens: int = 2048
    turn_delay: float = 0.5
    round_delay: float = 1.0
    log_level: str = "INFO"

    @property
    def has_credentials(self) -> bool:
        return bool(self.llm_api_key or self.llm_proxy_url)


def load_settings(env_file: Path | None = ENV_FILE) -> Settings:
    """Build Settings from environment variables; unset ones keep defaults."""
    if env_file is not None:
        load_dotenv(env_file)
    values = {}
    for name in Settings.model_fields:
        raw = os.getenv(name.upper())
        if raw is not None and raw != "":
            values[name] = raw
    return Settings.model_validate(values)
