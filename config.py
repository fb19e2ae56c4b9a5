"""
Configuration module for Local Codex.
Handles environment variables, provider selection, loop ceilings and memory settings.
"""

import dataclasses
import os
from dataclasses import dataclass
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

CONFIG_DIR = os.path.join(os.path.expanduser("~"), ".local-codex")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class AWSConfig:
    """AWS-specific configuration (only used by the Bedrock provider)"""
    region: str = os.getenv("AWS_REGION", "us-east-1")
    access_key_id: str = os.getenv("AWS_ACCESS_KEY_ID", "")
    secret_access_key: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    session_token: str = os.getenv("AWS_SESSION_TOKEN", "")
    profile_name: str = os.getenv("AWS_PROFILE", "")

    def has_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)

    def has_session_token(self) -> bool:
        return bool(self.session_token)

    def has_profile(self) -> bool:
        return bool(self.profile_name)


@dataclass
class ModelConfig:
    """Model selection shared by every provider"""
    provider: str = os.getenv("MODEL_PROVIDER", "ollama")
    max_tokens: int = int(os.getenv("MAX_TOKENS", "4096"))
    temperature: Optional[float] = float(os.getenv("TEMPERATURE")) if os.getenv("TEMPERATURE") else 0.2
    bedrock_model_id: str = os.getenv("BEDROCK_MODEL_ID", "us.anthropic.claude-haiku-4-5-20251001-v1:0")
    bedrock_embed_model_id: str = os.getenv("BEDROCK_EMBED_MODEL_ID", "cohere.embed-english-v3")


@dataclass
class OllamaConfig:
    """Local Ollama server settings"""
    host: str = os.getenv("OLLAMA_HOST", "http://localhost:11434")
    model: str = os.getenv("OLLAMA_MODEL", "codellama")
    embed_model: str = os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text")
    num_ctx: int = int(os.getenv("OLLAMA_NUM_CTX", "8192"))
    request_timeout: int = int(os.getenv("OLLAMA_TIMEOUT", "180"))


@dataclass
class AppConfig:
    """Application-specific configuration"""
    title: str = "Local Codex"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "local_codex.log")
    debug_mode: bool = _env_bool("DEBUG_MODE", "false")
    working_directory: str = os.getenv("WORKING_DIRECTORY", ".")
    config_dir: str = os.getenv("LOCAL_CODEX_HOME", CONFIG_DIR)
    # Answer trivial requests (time, ls, cat) without calling the model
    intent_routing_enabled: bool = _env_bool("INTENT_ROUTING_ENABLED", "true")
    # Name, git state, layout, manifest and README in every system prompt
    project_context_enabled: bool = _env_bool("PROJECT_CONTEXT_ENABLED", "true")


@dataclass
class LoopConfig:
    """Ceilings for one orchestration run. Passed to AgentLoop explicitly."""
    step_ceiling: int = 10
    retry_ceiling: int = 2
    per_tool_timeout: float = 30.0
    stream: bool = False

    @classmethod
    def from_env(cls) -> "LoopConfig":
        """Build from the current environment (re-reading .env)."""
        load_dotenv(override=True)
        return cls(
            step_ceiling=int(os.getenv("AGENT_MAX_STEPS", "10")),
            retry_ceiling=int(os.getenv("AGENT_MAX_RETRIES", "2")),
            per_tool_timeout=float(os.getenv("TOOL_TIMEOUT", "30")),
            stream=_env_bool("STREAM_RESPONSES", "false"),
        )

    def with_overrides(self, step_ceiling: Optional[int] = None, retry_ceiling: Optional[int] = None,
                       per_tool_timeout: Optional[float] = None, stream: Optional[bool] = None) -> "LoopConfig":
        """Copy with the given fields replaced. None leaves a field as is."""
        changes = {
            "step_ceiling": step_ceiling,
            "retry_ceiling": retry_ceiling,
            "per_tool_timeout": per_tool_timeout,
            "stream": stream,
        }
        return dataclasses.replace(self, **{k: v for k, v in changes.items() if v is not None})

    def validate(self) -> None:
        if self.step_ceiling < 1:
            raise ValueError("step_ceiling must be at least 1")
        if self.retry_ceiling < 0:
            raise ValueError("retry_ceiling must not be negative")
        if self.per_tool_timeout <= 0:
            raise ValueError("per_tool_timeout must be positive")


@dataclass
class MemoryConfig:
    """Semantic and short-term memory settings"""
    enabled: bool = _env_bool("MEMORY_ENABLED", "true")
    index_file: str = os.getenv(
        "SEMANTIC_INDEX_FILE",
        os.path.join(os.getenv("LOCAL_CODEX_HOME", CONFIG_DIR), "semantic-memory", "index.json"),
    )
    short_term_file: str = os.getenv(
        "MEMORY_FILE",
        os.path.join(os.getenv("LOCAL_CODEX_HOME", CONFIG_DIR), "memory.json"),
    )
    max_entries: int = int(os.getenv("MAX_SEMANTIC_ENTRIES", "1000"))
    max_short_term_items: int = int(os.getenv("MAX_MEMORY_ITEMS", "20"))
    top_k: int = int(os.getenv("MAX_SEMANTIC_RESULTS", "5"))
    min_content_length: int = 10
    max_context_chars: int = int(os.getenv("MAX_CONTEXT_CHARS", "6000"))
    # Per-repository code index (one JSON file per working directory)
    repo_index_dir: str = os.getenv(
        "REPO_INDEX_DIR",
        os.path.join(os.getenv("LOCAL_CODEX_HOME", CONFIG_DIR), "rag"),
    )
    repo_index_max_files: int = int(os.getenv("REPO_INDEX_MAX_FILES", "50"))
    code_top_k: int = int(os.getenv("MAX_CODE_RESULTS", "3"))


# Global config instances
aws_config = AWSConfig()
model_config = ModelConfig()
ollama_config = OllamaConfig()
app_config = AppConfig()
loop_config = LoopConfig.from_env()
memory_config = MemoryConfig()


def reload_config() -> None:
    """Re-read .env and rebuild the global config instances in place.

    Dataclass defaults are evaluated at import, so the instances are rebuilt
    field by field from the environment instead of via the constructors.
    """
    global loop_config
    load_dotenv(override=True)
    model_config.provider = os.getenv("MODEL_PROVIDER", model_config.provider)
    model_config.max_tokens = int(os.getenv("MAX_TOKENS", str(model_config.max_tokens)))
    model_config.bedrock_model_id = os.getenv("BEDROCK_MODEL_ID", model_config.bedrock_model_id)
    model_config.bedrock_embed_model_id = os.getenv("BEDROCK_EMBED_MODEL_ID", model_config.bedrock_embed_model_id)
    ollama_config.host = os.getenv("OLLAMA_HOST", ollama_config.host)
    ollama_config.model = os.getenv("OLLAMA_MODEL", ollama_config.model)
    ollama_config.embed_model = os.getenv("OLLAMA_EMBED_MODEL", ollama_config.embed_model)
    app_config.log_level = os.getenv("LOG_LEVEL", app_config.log_level)
    loop_config = LoopConfig.from_env()


def get_provider_name() -> str:
    return (model_config.provider or "ollama").strip().lower()


def get_model_name() -> str:
    """Display name of the configured chat model."""
    if get_provider_name() == "bedrock":
        return model_config.bedrock_model_id
    return ollama_config.model
