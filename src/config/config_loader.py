"""Configuration loader and models."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_validator
from dotenv import load_dotenv

from .exceptions import ConfigError, ConfigFileError, ConfigValidationError


class RetrySettings(BaseModel):
    """Exponential backoff settings for one channel."""
    max_attempts: int = Field(default=3, ge=1)
    initial_delay_ms: int = Field(default=1000, ge=0)
    multiplier: float = Field(default=2.0, ge=1.0)
    max_delay_ms: int = Field(default=30000, ge=0)
    deadline_ms: Optional[int] = None


class RetryConfig(BaseModel):
    """Retry settings per channel."""
    email: RetrySettings = Field(default_factory=RetrySettings)
    push: RetrySettings = Field(default_factory=lambda: RetrySettings(max_attempts=3, initial_delay_ms=500))


class CircuitBreakerSettings(BaseModel):
    """Circuit breaker thresholds; durations are in seconds."""
    sliding_window_size: int = Field(default=10, ge=1)
    minimum_number_of_calls: int = Field(default=5, ge=1)
    failure_rate_threshold: float = Field(default=50.0, gt=0, le=100)
    slow_call_rate_threshold: float = Field(default=100.0, gt=0, le=100)
    slow_call_duration_threshold: float = Field(default=5.0, gt=0)
    wait_duration_in_open_state: float = Field(default=60.0, ge=0)
    permitted_number_of_calls_in_half_open_state: int = Field(default=3, ge=1)
    automatic_transition_from_open_to_half_open: bool = True


class CircuitBreakerSection(BaseModel):
    """Default breaker settings plus partial per-instance overrides."""
    default: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    instances: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    def settings_for(self, name: str) -> CircuitBreakerSettings:
        """Resolve the effective settings of a named breaker."""
        overrides = self.instances.get(name) or {}
        return CircuitBreakerSettings(**{**self.default.model_dump(), **overrides})


class GlobalRateLimit(BaseModel):
    requests_per_minute: int = Field(default=1000, ge=1)


class PerServiceRateLimit(BaseModel):
    enabled: bool = True
    requests_per_minute: int = Field(default=200, ge=1)


class RateLimitConfig(BaseModel):
    """Internal service rate limiting."""
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = True
    window_seconds: int = Field(default=60, ge=1)
    global_limit: GlobalRateLimit = Field(default_factory=GlobalRateLimit, alias="global")
    per_service: PerServiceRateLimit = Field(default_factory=PerServiceRateLimit)


class BatchWriterConfig(BaseModel):
    """Write-behind buffer settings, shared by the email and push writers."""
    batch_size: int = Field(default=50, ge=1)
    queue_capacity: int = Field(default=1000, ge=1)
    flush_interval_ms: int = Field(default=1000, ge=1)
    offer_timeout_ms: int = Field(default=100, ge=0)


class SmtpConfig(BaseModel):
    enabled: bool = True
    host: Optional[str] = None
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    use_ssl: bool = False
    timeout_seconds: int = 30
    priority: int = 10


class SendGridConfig(BaseModel):
    enabled: bool = False
    api_key: Optional[str] = None
    api_url: str = "https://api.sendgrid.com/v3/mail/send"
    timeout_seconds: int = 30
    priority: int = 5


class EmailValidationConfig(BaseModel):
    enabled: bool = True
    max_recipients: int = 50
    max_cc_recipients: int = 20
    max_bcc_recipients: int = 50
    max_attachments: int = 10
    max_attachment_size_mb: int = 10
    max_total_attachment_size_mb: int = 25
    max_body_size_kb: int = 500


class EmailConfig(BaseModel):
    """Email channel configuration."""
    from_address: Optional[str] = None
    active_provider: str = "smtp"
    fallback_to_priority: bool = False
    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    sendgrid: SendGridConfig = Field(default_factory=SendGridConfig)
    validation: EmailValidationConfig = Field(default_factory=EmailValidationConfig)

    @field_validator("active_provider")
    @classmethod
    def validate_active_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in ("smtp", "sendgrid"):
            raise ValueError(f"Unknown email provider: {v}")
        return v


class FcmConfig(BaseModel):
    enabled: bool = True
    credentials_file: Optional[str] = None
    dry_run: bool = False
    priority: int = 10


class ApnsConfig(BaseModel):
    enabled: bool = False
    team_id: Optional[str] = None
    key_id: Optional[str] = None
    bundle_id: Optional[str] = None
    key_path: Optional[str] = None
    production: bool = False
    timeout_seconds: int = 10
    priority: int = 5


class WebPushConfig(BaseModel):
    enabled: bool = False
    vapid_public_key: Optional[str] = None
    vapid_private_key: Optional[str] = None
    subject: Optional[str] = None
    priority: int = 3


class PushValidationConfig(BaseModel):
    enabled: bool = True
    max_title_length: int = 65
    max_body_length: int = 240
    max_data_payload_kb: int = 4


class PushConfig(BaseModel):
    """Push channel configuration."""
    active_provider: str = "fcm"
    fallback_to_priority: bool = True
    fcm: FcmConfig = Field(default_factory=FcmConfig)
    apns: ApnsConfig = Field(default_factory=ApnsConfig)
    web: WebPushConfig = Field(default_factory=WebPushConfig)
    validation: PushValidationConfig = Field(default_factory=PushValidationConfig)

    @field_validator("active_provider")
    @classmethod
    def validate_active_provider(cls, v: str) -> str:
        v = v.lower()
        if v not in ("fcm", "apns", "web_push"):
            raise ValueError(f"Unknown push provider: {v}")
        return v


class StorageConfig(BaseModel):
    """Storage service configuration."""
    type: str = "memory"
    database_path: str = "data/herald.db"
    connection_timeout: Optional[float] = None
    echo: bool = False


class CacheConfig(BaseModel):
    """Shared store configuration; ``none`` disables Redis-backed features."""
    type: str = "none"


class AuditConfig(BaseModel):
    enabled: bool = True
    sinks: List[str] = Field(default_factory=lambda: ["logging"])
    webhook_url: Optional[str] = None
    webhook_timeout_seconds: int = 10
    webhook_max_retries: int = 2


class IdempotencyConfig(BaseModel):
    enabled: bool = True
    ttl_hours: int = Field(default=24, ge=1)


class ExecutorsConfig(BaseModel):
    email_max_concurrency: int = Field(default=10, ge=1)
    push_max_concurrency: int = Field(default=20, ge=1)
    shutdown_timeout_seconds: float = 30.0


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size_mb: int = 10
    backup_count: int = 5


class Config(BaseModel):
    """Main application configuration."""

    # Environment
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Channels
    email: EmailConfig = Field(default_factory=EmailConfig)
    push: PushConfig = Field(default_factory=PushConfig)

    # Delivery infrastructure
    retry: RetryConfig = Field(default_factory=RetryConfig)
    circuit_breaker: CircuitBreakerSection = Field(default_factory=CircuitBreakerSection)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    batch_writer: BatchWriterConfig = Field(default_factory=BatchWriterConfig)
    executors: ExecutorsConfig = Field(default_factory=ExecutorsConfig)

    # Services
    storage_service: StorageConfig = Field(default_factory=StorageConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    idempotency: IdempotencyConfig = Field(default_factory=IdempotencyConfig)

    # Logging
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


class ConfigLoader:
    """Configuration loader that handles layered configuration from multiple sources.

    Configuration loading priority (highest to lowest):
    1. CLI arguments (handled externally)
    2. Environment variables (.env file or system env)
    3. Local config file (config.local.yaml - user-specific, gitignored)
    4. Project config file (config.yaml - defaults, committed to Git)
    5. Built-in defaults (hardcoded in code)
    """

    ENV_MAPPINGS = {
        'ENVIRONMENT': 'environment',
        'DEBUG': 'debug',
        'REDIS_URL': 'redis_url',
        'CACHE_TYPE': 'cache.type',
        'STORAGE_TYPE': 'storage_service.type',
        'DATABASE_PATH': 'storage_service.database_path',
        'EMAIL_FROM_ADDRESS': 'email.from_address',
        'EMAIL_ACTIVE_PROVIDER': 'email.active_provider',
        'SMTP_HOST': 'email.smtp.host',
        'SMTP_PORT': 'email.smtp.port',
        'SMTP_USERNAME': 'email.smtp.username',
        'SMTP_PASSWORD': 'email.smtp.password',
        'SENDGRID_API_KEY': 'email.sendgrid.api_key',
        'PUSH_ACTIVE_PROVIDER': 'push.active_provider',
        'FCM_CREDENTIALS_FILE': 'push.fcm.credentials_file',
        'APNS_TEAM_ID': 'push.apns.team_id',
        'APNS_KEY_ID': 'push.apns.key_id',
        'APNS_BUNDLE_ID': 'push.apns.bundle_id',
        'APNS_KEY_PATH': 'push.apns.key_path',
        'APNS_PRODUCTION': 'push.apns.production',
        'VAPID_PUBLIC_KEY': 'push.web.vapid_public_key',
        'VAPID_PRIVATE_KEY': 'push.web.vapid_private_key',
        'VAPID_SUBJECT': 'push.web.subject',
        'RATE_LIMIT_ENABLED': 'rate_limit.enabled',
        'AUDIT_SINKS': 'audit.sinks',
        'AUDIT_WEBHOOK_URL': 'audit.webhook_url',
        'LOG_LEVEL': 'logging.level',
        'LOG_FILE_PATH': 'logging.file_path',
    }

    INT_KEYS = {'port', 'max_file_size_mb', 'backup_count'}

    def __init__(self, config_file: Optional[str] = None, env_file: Optional[str] = None,
                 local_config_file: Optional[str] = "config.local.yaml", load_env_file: bool = True,
                 use_env_vars: bool = True):
        """
        Initialize config loader.

        Args:
            config_file: Path to main YAML config file (defaults)
            env_file: Path to .env file
            local_config_file: Path to local override config file (None to disable local config)
            load_env_file: Whether to automatically load .env file
            use_env_vars: Whether to use environment variables for overrides
        """
        self.config_file = config_file or "config.yaml"
        self.local_config_file = local_config_file
        self.env_file = env_file or ".env"
        self.load_env_file = load_env_file
        self.use_env_vars = use_env_vars

    def load(self) -> Config:
        """
        Load configuration from multiple sources with proper precedence.

        Loading order (later sources override earlier ones):
        1. Base config file (config.yaml)
        2. Local config file (config.local.yaml)
        3. Environment variables (.env file + system env)

        Returns:
            Validated Config object

        Raises:
            ConfigValidationError: If cross-field validation fails
            ConfigError: If configuration loading fails
        """
        try:
            if self.load_env_file and Path(self.env_file).exists():
                load_dotenv(self.env_file)

            config_data = self._load_layered_yaml_config()

            if self.use_env_vars:
                config_data = self._override_with_env(config_data)

            config = Config(**config_data)
            self._validate_config(config)
            return config

        except ConfigError:
            raise
        except Exception as e:
            raise ConfigError(f"Failed to load configuration: {e}") from e

    def _load_layered_yaml_config(self) -> Dict[str, Any]:
        """Load configuration from multiple YAML files with proper layering."""
        config_data = {}

        base_config = self._load_single_yaml_config(self.config_file)
        if base_config:
            config_data.update(base_config)

        if self.local_config_file:
            local_config = self._load_single_yaml_config(self.local_config_file)
            if local_config:
                config_data = self._deep_merge_configs(config_data, local_config)

        return config_data

    def _load_single_yaml_config(self, config_file: str) -> Dict[str, Any]:
        """Load configuration from a single YAML file."""
        config_path = Path(config_file)

        if not config_path.exists():
            return {}

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Invalid YAML in config file '{config_file}': {e}") from e
        except OSError as e:
            raise ConfigFileError(f"Cannot read config file '{config_file}': {e}", path=config_file) from e

    def _deep_merge_configs(self, base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries.

        Args:
            base_config: Base configuration dictionary
            override_config: Override configuration dictionary

        Returns:
            Merged configuration dictionary
        """
        result = copy.deepcopy(base_config)

        for key, value in override_config.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _override_with_env(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Override configuration with environment variables."""
        for env_var, config_path in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is None:
                continue

            keys = config_path.split('.')
            current = config_data
            for key in keys[:-1]:
                if not isinstance(current.get(key), dict):
                    current[key] = {}
                current = current[key]
            current[keys[-1]] = self._convert_env_value(env_value, keys[-1])

        return config_data

    def _convert_env_value(self, value: str, key: str) -> Any:
        """Convert environment variable value to appropriate type."""
        if key in ['debug'] or value.lower() in ['true', 'false']:
            return value.lower() == 'true'

        if key in self.INT_KEYS:
            try:
                return int(value)
            except ValueError:
                return value

        if key in ['sinks']:
            return [item.strip() for item in value.split(',') if item.strip()]

        return value

    def _validate_config(self, config: Config) -> None:
        """Perform additional configuration validation."""
        if config.storage_service.type not in ("memory", "database"):
            raise ConfigValidationError(f"Unknown storage type: {config.storage_service.type}", section="storage_service")

        if config.cache.type not in ("redis", "none"):
            raise ConfigValidationError(f"Unknown cache type: {config.cache.type}", section="cache")

        if config.email.sendgrid.enabled and not config.email.sendgrid.api_key:
            raise ConfigValidationError("SendGrid API key is required when SendGrid is enabled", section="email")

        if config.email.active_provider == "sendgrid" and not config.email.sendgrid.enabled:
            raise ConfigValidationError("Active email provider 'sendgrid' is not enabled", section="email")

        if config.email.active_provider == "smtp" and not config.email.smtp.enabled:
            raise ConfigValidationError("Active email provider 'smtp' is not enabled", section="email")

        if config.push.apns.enabled:
            missing = [
                name for name in ("team_id", "key_id", "bundle_id", "key_path")
                if not getattr(config.push.apns, name)
            ]
            if missing:
                raise ConfigValidationError(
                    f"APNs requires {', '.join(missing)} when enabled",
                    section="push",
                )

        if config.push.web.enabled and not (
            config.push.web.vapid_public_key and config.push.web.vapid_private_key and config.push.web.subject
        ):
            raise ConfigValidationError(
                "Web Push requires VAPID public key, private key and subject when enabled",
                section="push",
            )

        unknown_sinks = set(config.audit.sinks) - {"logging", "webhook"}
        if unknown_sinks:
            raise ConfigValidationError(f"Unknown audit sinks: {sorted(unknown_sinks)}", section="audit")

        if "webhook" in config.audit.sinks and not config.audit.webhook_url:
            raise ConfigValidationError("Audit webhook URL is required when the webhook sink is enabled", section="audit")
