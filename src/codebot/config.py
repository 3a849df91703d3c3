# config.py
# Runtime configuration.
#
# Settings is built once by the CLI and handed to AgentManager. Nothing in
# the graph reads the environment directly.

from enum import Enum

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Provider(str, Enum):
    OPENAI = "openai"
    OPENROUTER = "openrouter"
    OLLAMA = "ollama"


class ModelOptions(BaseModel):
    """Which model answers, and how."""

    provider: Provider = Provider.OPENAI
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class Settings(BaseSettings):
    """
    Application settings.

    Fields bind from CODEBOT_* environment variables. Provider credentials
    also accept the provider's conventional variable names.
    """

    model_config = SettingsConfigDict(
        env_prefix="CODEBOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Model
    # ------------------------------------------------------------------
    provider: Provider = Field(default=Provider.OPENAI, description="Model provider backing the agent")
    model: str = Field(default="gpt-4o-mini", description="Model name as the provider knows it")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")

    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CODEBOT_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    openrouter_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CODEBOT_OPENROUTER_API_KEY", "OPENROUTER_API_KEY"),
    )
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        validation_alias=AliasChoices("CODEBOT_OLLAMA_BASE_URL", "OLLAMA_BASE_URL"),
    )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    stream: bool = Field(default=True, description="Stream plan and response generation")
    max_follow_up_rounds: int = Field(
        default=3,
        ge=0,
        description="How many times verification may append further steps to one request",
    )
    command_timeout: float = Field(default=30.0, gt=0, description="Shell tool timeout in seconds")

    log_level: str = Field(default="WARNING", description="DEBUG, INFO, WARNING, ERROR or CRITICAL")

    def model_options(self) -> ModelOptions:
        return ModelOptions(provider=self.provider, model=self.model, temperature=self.temperature)
