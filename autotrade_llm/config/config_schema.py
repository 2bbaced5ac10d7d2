"""
Configuration schema using Pydantic for validation.
"""

import os
import re
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from autotrade_llm.errors import ConfigurationError

SUPPORTED_GEMINI_MODELS = (
    "gemini-2.5-pro",
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-1.5-flash",
    "gemini-1.5-pro",
)
DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"

KNOWN_PRICES: Dict[str, float] = {
    "AAPL": 224.50,
    "GOOGL": 175.20,
    "MSFT": 419.70,
    "TSLA": 246.80,
    "NVDA": 126.50,
    "XLI": 135.40,
    "HEI": 225.30,
    "RCL": 160.25,
    "NIO": 4.25,
    "XLP": 80.15,
    "XLV": 135.60,
    "XLY": 190.25,
    "XLF": 42.80,
    "SPY": 550.20,
}


def normalize_gemini_model(model: str) -> str:
    """Map loose Gemini model names (e.g. "2.5 pro", "gemini-flash") to a supported id"""
    name = model.lower().strip()
    for candidate in SUPPORTED_GEMINI_MODELS:
        if name == candidate:
            return candidate
    for candidate in SUPPORTED_GEMINI_MODELS:
        version, variant = candidate.split("-")[1:]
        if version in name and variant in name:
            return candidate
    if "pro" in name:
        return "gemini-2.5-pro"
    return DEFAULT_GEMINI_MODEL


def derive_profile_name(model: str) -> str:
    """Default profile name for a model when none is configured"""
    name = model.lower()
    if name.startswith("gpt-4o"):
        return "gpt4o"
    if "gemini" in name:
        return "gemini"
    if "claude" in name:
        return "claude"
    return "default"


class LLMConfig(BaseModel):
    provider: Optional[Literal["openai", "google"]] = None
    model: str = "gpt-4o"
    api_key_env: Optional[str] = None
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    max_turns: int = Field(default=100, gt=0, description="Model turns allowed per session")
    timeout_seconds: float = Field(default=120.0, gt=0)
    instructions: str = Field(
        default=(
            "You are an autonomous stock trader managing a paper brokerage account. "
            "Always call think before any other tool in a turn, check prices before "
            "trading, and explain each trade briefly."
        ),
        description="System instructions sent with every request",
    )
    prompt_cache_enabled: bool = True
    prompt_cache_ttl: str = "5m"

    @model_validator(mode="after")
    def resolve_provider(self):
        """Infer provider from model name and normalize Gemini model ids"""
        if self.provider is None:
            self.provider = "google" if "gemini" in self.model.lower() else "openai"
        if self.provider == "google":
            self.model = normalize_gemini_model(self.model)
        if self.api_key_env is None:
            self.api_key_env = "GEMINI_API_KEY" if self.provider == "google" else "OPENAI_API_KEY"
        return self


class ExecutionConfig(BaseModel):
    """Alpaca brokerage settings"""
    api_key_env: str = "ALPACA_API_KEY"
    secret_key_env: str = "ALPACA_SECRET_KEY"
    paper_trading: bool = True
    base_url: Optional[str] = None
    time_in_force: Literal["day", "gtc"] = "gtc"
    order_history_limit: int = Field(default=100, gt=0, le=500)
    min_short_equity: float = Field(default=40000.0, ge=0, description="Equity required to open short positions")
    short_margin_ratio: float = Field(default=0.5, gt=0, le=1.0, description="Buying power required per dollar shorted")


class PricingConfig(BaseModel):
    fallback_seed: int = 42
    fallback_min: float = Field(default=50.0, gt=0)
    fallback_max: float = Field(default=250.0, gt=0)
    known_prices: Dict[str, float] = Field(default_factory=lambda: dict(KNOWN_PRICES))
    secondary_lookback: str = "5d"

    @field_validator("fallback_max")
    @classmethod
    def validate_range(cls, v, info):
        """Ensure fallback range is not empty"""
        low = info.data.get("fallback_min")
        if low is not None and v <= low:
            raise ValueError(f"fallback_max ({v}) must be greater than fallback_min ({low})")
        return v


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=5, ge=1)
    base_delay_seconds: float = Field(default=2.0, ge=0)
    jitter_seconds: float = Field(default=1.0, ge=0)


class ThreadConfig(BaseModel):
    """Conversation thread persistence limits"""
    max_items: int = Field(default=40, gt=0)
    hard_ceiling: int = Field(default=50, gt=0)

    @field_validator("hard_ceiling")
    @classmethod
    def validate_ceiling(cls, v, info):
        max_items = info.data.get("max_items")
        if max_items is not None and v < max_items:
            raise ValueError(f"hard_ceiling ({v}) must be >= max_items ({max_items})")
        return v


class ScheduleConfig(BaseModel):
    interval_minutes: int = Field(default=30, ge=5, description="Minutes between sessions in continuous mode")
    timezone: str = "America/New_York"
    testing_mode: bool = Field(
        default_factory=lambda: os.getenv("TESTING_MODE", "").lower() == "true",
        description="Treat the market as always open",
    )


class SearchConfig(BaseModel):
    api_key_env: str = "BRAVE_API_KEY"
    endpoint: str = "https://api.search.brave.com/res/v1/web/search"
    result_count: int = Field(default=5, gt=0)
    max_results: int = Field(default=3, gt=0)
    timeout_seconds: float = 10.0


class Config(BaseModel):
    """Main configuration"""
    profile: Optional[str] = None
    results_dir: str = "results"
    starting_capital: float = Field(default=1000.0, gt=0)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    pricing: PricingConfig = Field(default_factory=PricingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    thread: ThreadConfig = Field(default_factory=ThreadConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)

    @field_validator("profile")
    @classmethod
    def validate_profile(cls, v):
        if v is not None and not re.fullmatch(r"[A-Za-z0-9_.-]+", v):
            raise ValueError(f"Invalid profile name: {v!r}")
        return v

    @model_validator(mode="after")
    def default_profile(self):
        if not self.profile:
            self.profile = os.getenv("PROFILE_NAME") or derive_profile_name(self.llm.model)
        return self

    def require_credentials(self, environ=None) -> Dict[str, str]:
        """
        Collect the API keys this configuration needs.

        Returns:
            Mapping of environment variable name to value

        Raises:
            ConfigurationError: If any required variable is missing
        """
        environ = os.environ if environ is None else environ
        required: List[str] = [
            self.llm.api_key_env,
            self.execution.api_key_env,
            self.execution.secret_key_env,
        ]
        missing = [name for name in required if not environ.get(name)]
        if missing:
            raise ConfigurationError(
                f"Missing required environment variables: {', '.join(missing)}. "
                f"Set them in your .env file or environment.",
                missing=missing,
            )
        return {name: environ[name] for name in required}
