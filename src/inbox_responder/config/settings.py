from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Tuple

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from inbox_responder.config.paths import REVIEWS_FILENAME, resolve_dir
from inbox_responder.models import ConfigError

ENV_PREFIX = "INBOX_RESPONDER_"

PROVIDER_IMAP = "imap"
PROVIDER_GMAIL = "gmail"

DEFAULT_SENSITIVE_KEYWORDS = (
    "storno",
    "stornieren",
    "kündigen",
    "abbrechen",
    "anwalt",
    "polizei",
    "klarna-verfahren",
    "widerruf",
    "betrug",
    "gericht",
    "rückerstattung",
    "beschwerde",
    "streit",
    "fraud",
    "lawyer",
    "police",
    "court",
    "refund",
    "complaint",
    "dispute",
    "chargeback",
)
DEFAULT_CANCELLATION_KEYWORDS = (
    "storno",
    "stornieren",
    "kündigen",
    "abbrechen",
    "widerruf",
    "cancel",
)
DEFAULT_ORDER_STATUS_KEYWORDS = (
    "bestellung",
    "lieferung",
    "wann kommt",
    "order status",
    "delivery",
    "when will",
)
DEFAULT_FAQ_KEYWORDS = (
    "größe",
    "grössen",
    "lieferzeit",
    "versand",
    "size",
    "sizing",
    "delivery time",
    "shipping",
)
DEFAULT_THANK_YOU_KEYWORDS = ("danke", "vielen dank", "thank you", "thanks")
DEFAULT_NO_REPLY_PATTERNS = ("noreply", "no-reply")

DEFAULT_SIGN_OFF = "Mit freundlichen Grüßen\nIhr Kundenservice"
DEFAULT_REPLY_MODEL = "gpt-4o-mini"
DEFAULT_LANGUAGE_MODEL = "gpt-4o"


@dataclass(frozen=True)
class KeywordSets:
    sensitive: Tuple[str, ...] = DEFAULT_SENSITIVE_KEYWORDS
    # Cancellation terms count as sensitive territory.
    cancellation: Tuple[str, ...] = DEFAULT_CANCELLATION_KEYWORDS
    order_status: Tuple[str, ...] = DEFAULT_ORDER_STATUS_KEYWORDS
    faq: Tuple[str, ...] = DEFAULT_FAQ_KEYWORDS
    thank_you: Tuple[str, ...] = DEFAULT_THANK_YOU_KEYWORDS


@dataclass(frozen=True)
class TimingSettings:
    idle_interval: float = 120.0
    poll_interval: float = 60.0
    failure_backoff: float = 60.0
    failure_multiplier: int = 5
    connect_retries: int = 3
    connect_retry_delay: float = 5.0
    operation_timeout: float = 10.0
    send_timeout: float = 30.0
    generation_timeout: float = 60.0

    @property
    def failure_delay(self) -> float:
        return self.failure_backoff * self.failure_multiplier


@dataclass(frozen=True)
class Settings:
    email_address: str
    openai_api_key: str
    provider: str = PROVIDER_IMAP
    email_password: Optional[str] = None
    imap_host: Optional[str] = None
    imap_port: int = 993
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    mailbox: str = "INBOX"
    reply_model: str = DEFAULT_REPLY_MODEL
    language_model: str = DEFAULT_LANGUAGE_MODEL
    sign_off: str = DEFAULT_SIGN_OFF
    discount_code: str = "DANKE10"
    shop_name: str = "our shop"
    keywords: KeywordSets = field(default_factory=KeywordSets)
    no_reply_patterns: Tuple[str, ...] = DEFAULT_NO_REPLY_PATTERNS
    timing: TimingSettings = field(default_factory=TimingSettings)
    max_batch_size: int = 25
    state_dir: Path = Path(".state")
    logs_dir: Path = Path("logs")
    secrets_dir: Path = Path("secrets")

    @property
    def reviews_path(self) -> Path:
        return self.state_dir / REVIEWS_FILENAME


CommaList = Annotated[Tuple[str, ...], NoDecode]


class EnvironmentSettings(BaseSettings):
    """
    Validated view of the process environment.

    The legacy variable names of the mail bot (EMAIL_ADDRESS, IMAP_SERVER, ...)
    are aliases; everything new lives under the INBOX_RESPONDER_ prefix.
    Keyword lists are comma separated.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_ignore_empty=True,
        extra="ignore",
        frozen=True,
    )

    # Legacy names
    email_address: Optional[str] = Field(None, validation_alias="EMAIL_ADDRESS")
    email_password: Optional[str] = Field(None, validation_alias="EMAIL_PASSWORD")
    imap_host: Optional[str] = Field(None, validation_alias="IMAP_SERVER")
    imap_port: int = Field(993, ge=0, validation_alias="IMAP_PORT")
    smtp_host: Optional[str] = Field(None, validation_alias="SMTP_SERVER")
    smtp_port: int = Field(587, ge=0, validation_alias="SMTP_PORT")
    openai_api_key: Optional[str] = Field(None, validation_alias="OPENAI_API_KEY")

    provider: Literal["imap", "gmail"] = PROVIDER_IMAP
    mailbox: str = "INBOX"
    reply_model: str = DEFAULT_REPLY_MODEL
    language_model: str = DEFAULT_LANGUAGE_MODEL
    sign_off: str = DEFAULT_SIGN_OFF
    discount_code: str = "DANKE10"
    shop_name: str = "our shop"

    sensitive_keywords: CommaList = DEFAULT_SENSITIVE_KEYWORDS
    cancellation_keywords: CommaList = DEFAULT_CANCELLATION_KEYWORDS
    order_status_keywords: CommaList = DEFAULT_ORDER_STATUS_KEYWORDS
    faq_keywords: CommaList = DEFAULT_FAQ_KEYWORDS
    thank_you_keywords: CommaList = DEFAULT_THANK_YOU_KEYWORDS
    no_reply_patterns: CommaList = DEFAULT_NO_REPLY_PATTERNS

    idle_interval: float = Field(120.0, ge=0)
    poll_interval: float = Field(60.0, ge=0)
    failure_backoff: float = Field(60.0, ge=0)
    connect_retries: int = Field(3, ge=0)
    connect_retry_delay: float = Field(5.0, ge=0)
    operation_timeout: float = Field(10.0, ge=0)
    send_timeout: float = Field(30.0, ge=0)
    generation_timeout: float = Field(60.0, ge=0)
    max_batch_size: int = Field(25, ge=0)

    state_dir: str = ".state"
    logs_dir: str = "logs"
    secrets_dir: str = "secrets"

    @field_validator(
        "email_address", "email_password", "imap_host", "smtp_host", "openai_api_key", mode="before"
    )
    @classmethod
    def _blank_is_missing(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator(
        "sensitive_keywords",
        "cancellation_keywords",
        "order_status_keywords",
        "faq_keywords",
        "thank_you_keywords",
        "no_reply_patterns",
        mode="before",
    )
    @classmethod
    def _split_commas(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(item.strip() for item in value.split(",") if item.strip())
        return value

    @field_validator("sign_off", mode="before")
    @classmethod
    def _unescape_newlines(cls, value: Any) -> Any:
        return value.replace("\\n", "\n") if isinstance(value, str) else value


def _env_name(location: Any) -> str:
    name = str(location)
    info = EnvironmentSettings.model_fields.get(name)
    if info is not None and isinstance(info.validation_alias, str):
        return info.validation_alias
    if name.isupper():
        return name
    return f"{ENV_PREFIX}{name.upper()}"


def load_settings() -> Settings:
    """Build the immutable runtime configuration from the environment (and .env)."""
    try:
        env = EnvironmentSettings()
    except ValidationError as exc:
        problems = "; ".join(
            f"{_env_name(error['loc'][0]) if error['loc'] else 'environment'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from exc

    required = ["email_address", "openai_api_key"]
    if env.provider == PROVIDER_IMAP:
        required += ["email_password", "imap_host", "smtp_host"]
    missing = [_env_name(name) for name in required if getattr(env, name) is None]
    if missing:
        raise ConfigError(f"Missing environment variable(s): {', '.join(missing)}")

    return Settings(
        email_address=env.email_address,
        openai_api_key=env.openai_api_key,
        provider=env.provider,
        email_password=env.email_password,
        imap_host=env.imap_host,
        imap_port=env.imap_port,
        smtp_host=env.smtp_host,
        smtp_port=env.smtp_port,
        mailbox=env.mailbox,
        reply_model=env.reply_model,
        language_model=env.language_model,
        sign_off=env.sign_off,
        discount_code=env.discount_code,
        shop_name=env.shop_name,
        keywords=KeywordSets(
            sensitive=env.sensitive_keywords,
            cancellation=env.cancellation_keywords,
            order_status=env.order_status_keywords,
            faq=env.faq_keywords,
            thank_you=env.thank_you_keywords,
        ),
        no_reply_patterns=env.no_reply_patterns,
        timing=TimingSettings(
            idle_interval=env.idle_interval,
            poll_interval=env.poll_interval,
            failure_backoff=env.failure_backoff,
            connect_retries=max(1, env.connect_retries),
            connect_retry_delay=env.connect_retry_delay,
            operation_timeout=env.operation_timeout,
            send_timeout=env.send_timeout,
            generation_timeout=env.generation_timeout,
        ),
        max_batch_size=max(1, env.max_batch_size),
        state_dir=resolve_dir(env.state_dir),
        logs_dir=resolve_dir(env.logs_dir),
        secrets_dir=resolve_dir(env.secrets_dir),
    )
