import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import colorlog
from dotenv import load_dotenv

from .exceptions import InvalidConfigurationError, MissingConfigurationError
from .models.scope_filter import ForestScopeFilter

# Load environment variables
load_dotenv(override=True)

"""
Configuration Management for AD Forest Health

This module provides centralized configuration management with validation,
environment variable handling, and the explicit scan configuration passed to
the replication aggregator at call time.
"""

VALID_AUTHENTICATIONS = ["NTLM", "SIMPLE", "ANONYMOUS"]


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _set_directory_log_level(log_level: str) -> None:
    """Set log levels for LDAP and DNS library loggers to reduce noise."""
    library_loggers = [
        "ldap3",
        "dns",
        "dns.resolver",
    ]
    # Library logging should only appear at DEBUG level
    target_level = logging.DEBUG if log_level == "DEBUG" else logging.WARNING
    for name in library_loggers:
        logging.getLogger(name).setLevel(target_level)


logger = logging.getLogger(__name__)


@dataclass
class LdapConfig:
    """Configuration for LDAP connections to domain controllers."""

    server: Optional[str] = field(default_factory=lambda: os.getenv("ADFH_LDAP_SERVER"))
    user: str = field(default_factory=lambda: os.getenv("ADFH_LDAP_USER", ""))
    password: str = field(default_factory=lambda: os.getenv("ADFH_LDAP_PASSWORD", ""))
    authentication: str = field(
        default_factory=lambda: os.getenv("ADFH_LDAP_AUTH", "NTLM")
    )
    port: int = field(default_factory=lambda: int(os.getenv("ADFH_LDAP_PORT", "389")))
    use_ssl: bool = field(default_factory=lambda: _env_bool("ADFH_LDAP_USE_SSL"))
    timeout: int = field(
        default_factory=lambda: int(os.getenv("ADFH_LDAP_TIMEOUT", "10"))
    )

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self.authentication = self.authentication.upper()
        if self.authentication not in VALID_AUTHENTICATIONS:
            raise InvalidConfigurationError(
                f"LDAP authentication must be one of: {VALID_AUTHENTICATIONS}",
                config_section="ldap",
            )
        if not 1 <= self.port <= 65535:
            raise InvalidConfigurationError(
                "LDAP port must be between 1 and 65535", config_section="ldap"
            )
        if self.timeout < 1:
            raise InvalidConfigurationError(
                "LDAP timeout must be at least 1 second", config_section="ldap"
            )

    def validate_credentials(self) -> None:
        """Validate that credentials are present for authenticated binds."""
        if self.authentication == "ANONYMOUS":
            return
        missing = []
        if not self.user:
            missing.append("ADFH_LDAP_USER")
        if not self.password:
            missing.append("ADFH_LDAP_PASSWORD")
        if missing:
            raise MissingConfigurationError(
                "LDAP credentials are required", missing_keys=missing
            )

    def get_connection_string(self) -> str:
        """Get formatted connection string for logging (without password)."""
        scheme = "ldaps" if self.use_ssl else "ldap"
        target = self.server or "<forest>"
        return f"{scheme}://{target}:{self.port} (user: {self.user or 'anonymous'}, auth: {self.authentication})"


@dataclass
class DnsConfig:
    """Configuration for best-effort address resolution."""

    timeout: float = field(
        default_factory=lambda: float(os.getenv("ADFH_DNS_TIMEOUT", "2.0"))
    )
    nameservers: List[str] = field(
        default_factory=lambda: _env_list("ADFH_DNS_NAMESERVERS")
    )

    def __post_init__(self) -> None:
        """Validate DNS configuration."""
        if self.timeout <= 0:
            raise InvalidConfigurationError(
                "DNS timeout must be positive", config_section="dns"
            )


@dataclass
class LoggingConfig:
    """Configuration for logging behavior."""

    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    format: str = field(
        default_factory=lambda: os.getenv(
            "LOG_FORMAT", "%(log_color)s%(levelname)s:%(name)s:%(message)s"
        )
    )
    file_output: Optional[str] = field(default_factory=lambda: os.getenv("LOG_FILE"))

    def __post_init__(self) -> None:
        """Validate logging configuration."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        self.level = self.level.upper()

    def get_log_level(self) -> int:
        """Convert string log level to logging constant."""
        level_attr = getattr(logging, self.level, None)
        if level_attr is None:
            raise ValueError(f"Invalid log level: {self.level}")
        return int(level_attr)


@dataclass
class ReplicationScanConfig:
    """Parameters of one forest replication scan."""

    forest: Optional[str] = field(default_factory=lambda: os.getenv("ADFH_FOREST"))
    include_domains: List[str] = field(
        default_factory=lambda: _env_list("ADFH_INCLUDE_DOMAINS")
    )
    exclude_domains: List[str] = field(
        default_factory=lambda: _env_list("ADFH_EXCLUDE_DOMAINS")
    )
    include_domain_controllers: List[str] = field(
        default_factory=lambda: _env_list("ADFH_INCLUDE_DCS")
    )
    exclude_domain_controllers: List[str] = field(
        default_factory=lambda: _env_list("ADFH_EXCLUDE_DCS")
    )
    skip_rodc: bool = field(default_factory=lambda: _env_bool("ADFH_SKIP_RODC"))
    extended: bool = field(default_factory=lambda: _env_bool("ADFH_EXTENDED"))
    partition_filter: str = "*"
    # Passed through unmodified to the scope resolver
    forest_options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.partition_filter:
            raise InvalidConfigurationError(
                "Partition filter must be '*' or a naming context DN",
                config_section="scan",
            )

    def to_scope_filter(self) -> ForestScopeFilter:
        """Build the include/exclude filter for the scope resolver."""
        return ForestScopeFilter(
            include_domains=self.include_domains,
            exclude_domains=self.exclude_domains,
            include_domain_controllers=self.include_domain_controllers,
            exclude_domain_controllers=self.exclude_domain_controllers,
            skip_rodc=self.skip_rodc,
        )


@dataclass
class ADForestHealthConfig:
    """Main configuration class that aggregates all configuration sections."""

    ldap: LdapConfig = field(default_factory=LdapConfig)
    dns: DnsConfig = field(default_factory=DnsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    scan: ReplicationScanConfig = field(default_factory=ReplicationScanConfig)

    @classmethod
    def from_environment(
        cls,
        forest: Optional[str] = None,
        extended: Optional[bool] = None,
        skip_rodc: Optional[bool] = None,
        ldap_server: Optional[str] = None,
    ) -> "ADForestHealthConfig":
        """
        Create configuration from environment variables.

        Args:
            forest: Optional forest name overriding ADFH_FOREST
            extended: Optional override for extended replication rows
            skip_rodc: Optional override for skipping read-only DCs
            ldap_server: Optional DC used for scope resolution

        Returns:
            ADForestHealthConfig: Configured instance
        """
        config = cls()
        if forest is not None:
            config.scan.forest = forest
        if extended is not None:
            config.scan.extended = extended
        if skip_rodc is not None:
            config.scan.skip_rodc = skip_rodc
        if ldap_server is not None:
            config.ldap.server = ldap_server
        return config

    def validate_all(self) -> None:
        """Validate all configuration sections."""
        try:
            self.ldap.__post_init__()
            self.ldap.validate_credentials()
            self.dns.__post_init__()
            self.logging.__post_init__()
            self.scan.__post_init__()
            self.scan.to_scope_filter()

            if not (self.scan.forest or self.ldap.server):
                raise MissingConfigurationError(
                    "A forest name or an LDAP server is required",
                    missing_keys=["ADFH_FOREST", "ADFH_LDAP_SERVER"],
                )

            logger.info("✅ Configuration validation successful")

        except Exception as e:
            logger.exception(f"❌ Configuration validation failed: {e}")
            raise

    def log_configuration_summary(self) -> None:
        """Log a summary of the current configuration (without sensitive data)."""
        logger.info("=" * 60)
        logger.info("🔧 AD FOREST HEALTH CONFIGURATION")
        logger.info("=" * 60)
        logger.info(f"🌲 Forest: {self.scan.forest or 'current forest'}")
        logger.info(f"🗄️  LDAP: {self.ldap.get_connection_string()}")
        logger.info(
            f"🌐 DNS: timeout={self.dns.timeout}s, nameservers={self.dns.nameservers or 'system'}"
        )
        logger.info("⚙️  Scan:")
        logger.info(f"   - Scope: {self.scan.to_scope_filter()}")
        logger.info(f"   - Extended Rows: {self.scan.extended}")
        logger.info(f"   - Partition Filter: {self.scan.partition_filter}")
        if self.scan.forest_options:
            logger.info(f"   - Forest Options: {sorted(self.scan.forest_options)}")
        logger.info(f"📝 Logging Level: {self.logging.level}")
        if self.logging.file_output:
            logger.info(f"📄 Log File: {self.logging.file_output}")
        logger.info("=" * 60)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization."""
        return {
            "ldap": {
                "server": self.ldap.server,
                "user": self.ldap.user,
                "authentication": self.ldap.authentication,
                "port": self.ldap.port,
                "use_ssl": self.ldap.use_ssl,
                "timeout": self.ldap.timeout,
                # Don't include password in serialization
            },
            "dns": {
                "timeout": self.dns.timeout,
                "nameservers": list(self.dns.nameservers),
            },
            "logging": {
                "level": self.logging.level,
                "file_output": self.logging.file_output,
            },
            "scan": {
                "forest": self.scan.forest,
                "include_domains": list(self.scan.include_domains),
                "exclude_domains": list(self.scan.exclude_domains),
                "include_domain_controllers": list(
                    self.scan.include_domain_controllers
                ),
                "exclude_domain_controllers": list(
                    self.scan.exclude_domain_controllers
                ),
                "skip_rodc": self.scan.skip_rodc,
                "extended": self.scan.extended,
                "partition_filter": self.scan.partition_filter,
                "forest_options": dict(self.scan.forest_options),
            },
        }


def setup_logging(config: LoggingConfig) -> None:
    """
    Setup logging configuration based on config.
    """
    _set_directory_log_level(config.level.upper())

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.handlers.clear()  # Remove any existing handlers
    root_logger.setLevel(config.get_log_level())

    console_handler = colorlog.StreamHandler()
    console_handler.setFormatter(colorlog.ColoredFormatter(config.format))
    root_logger.addHandler(console_handler)

    # Add file handler if file output is configured
    if config.file_output:
        file_handler = logging.FileHandler(config.file_output)
        file_formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s:%(name)s:%(message)s"
        )
        file_handler.setFormatter(file_formatter)
        root_logger.addHandler(file_handler)

    logger.info(
        f"📝 Logging configured: level={config.level}, file={config.file_output or 'console'}"
    )


def create_config_from_env(
    forest: Optional[str] = None,
    extended: Optional[bool] = None,
    skip_rodc: Optional[bool] = None,
    ldap_server: Optional[str] = None,
) -> ADForestHealthConfig:
    """
    Factory function to create and validate configuration from environment.

    Args:
        forest: Optional forest name
        extended: Optional override for extended replication rows
        skip_rodc: Optional override for skipping read-only DCs
        ldap_server: Optional DC used for scope resolution

    Returns:
        ADForestHealthConfig: Validated configuration instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    config = ADForestHealthConfig.from_environment(
        forest, extended, skip_rodc, ldap_server
    )
    config.validate_all()
    return config
