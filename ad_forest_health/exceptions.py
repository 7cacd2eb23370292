"""
Custom Exception Hierarchy for AD Forest Health

This module provides the exception hierarchy used across the replication
collectors, separating errors that abort a scan from errors that are absorbed
into report rows.
"""

from typing import Any, Dict, Optional

from ldap3.core.exceptions import (
    LDAPBindError,
    LDAPCommunicationError,
    LDAPException,
    LDAPInsufficientAccessRightsResult,
    LDAPInvalidCredentialsResult,
    LDAPSocketOpenError,
    LDAPStartTLSError,
)


class ADForestHealthError(Exception):
    """
    Base exception class for all AD Forest Health related errors.

    Provides structured error information including context, error codes,
    and optional recovery suggestions.
    """

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recovery_suggestion: Optional[str] = None,
    ) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error message
            error_code: Optional error code for programmatic handling
            context: Optional dictionary with error context
            cause: Optional underlying exception that caused this error
            recovery_suggestion: Optional suggestion for error recovery
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause
        self.recovery_suggestion = recovery_suggestion

    def __str__(self) -> str:
        """Return a formatted error message with context."""
        result = self.message
        if self.error_code:
            result = f"[{self.error_code}] {result}"
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            result += f" (context: {context_str})"
        if self.cause:
            result += f" (caused by: {self.cause})"
        if self.recovery_suggestion:
            result += f" (suggestion: {self.recovery_suggestion})"
        return result

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "recovery_suggestion": self.recovery_suggestion,
        }


# Directory-related exceptions
class DirectoryError(ADForestHealthError):
    """Base class for directory (LDAP) related errors."""

    pass


class ScopeResolutionError(DirectoryError):
    """Raised when the domain controllers of a forest cannot be enumerated."""

    def __init__(
        self, message: str, forest: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if forest:
            context["forest"] = forest
        kwargs["context"] = context
        kwargs.setdefault("error_code", "SCOPE_RESOLUTION_FAILED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Check that the forest name resolves and the LDAP credentials can read the configuration partition",
        )
        super().__init__(message, **kwargs)


class DCQueryError(DirectoryError):
    """Raised when a single domain controller's replication query fails."""

    def __init__(
        self, message: str, server: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if server:
            context["server"] = server
        kwargs["context"] = context
        kwargs.setdefault("error_code", "DC_QUERY_FAILED")
        super().__init__(message, **kwargs)
        self.server = server


class DCUnreachableError(DCQueryError):
    """Raised when a domain controller cannot be contacted."""

    def __init__(
        self, message: str, server: Optional[str] = None, **kwargs: Any
    ) -> None:
        kwargs.setdefault("error_code", "DC_UNREACHABLE")
        kwargs.setdefault(
            "recovery_suggestion",
            "Check that the domain controller is online and LDAP is reachable from this host",
        )
        super().__init__(message, server=server, **kwargs)


class QueryDeniedError(DCQueryError):
    """Raised when a domain controller refuses the bind or the read."""

    def __init__(
        self, message: str, server: Optional[str] = None, **kwargs: Any
    ) -> None:
        kwargs.setdefault("error_code", "DC_QUERY_DENIED")
        kwargs.setdefault(
            "recovery_suggestion",
            "Check the LDAP credentials and their replication read permissions",
        )
        super().__init__(message, server=server, **kwargs)


# Configuration-related exceptions
class ConfigurationError(ADForestHealthError):
    """Base class for configuration-related errors."""

    pass


class InvalidConfigurationError(ConfigurationError):
    """Raised when configuration validation fails."""

    def __init__(
        self, message: str, config_section: Optional[str] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if config_section:
            context["config_section"] = config_section
        kwargs["context"] = context
        kwargs.setdefault("error_code", "INVALID_CONFIG")
        kwargs.setdefault(
            "recovery_suggestion", "Check configuration file and environment variables"
        )
        super().__init__(message, **kwargs)


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration is missing."""

    def __init__(
        self, message: str, missing_keys: Optional[list[str]] = None, **kwargs: Any
    ) -> None:
        context = kwargs.get("context", {})
        if missing_keys:
            context["missing_keys"] = missing_keys
        kwargs["context"] = context
        kwargs.setdefault("error_code", "MISSING_CONFIG")
        kwargs.setdefault(
            "recovery_suggestion",
            f"Set required configuration: {', '.join(missing_keys)}"
            if missing_keys
            else "Set required configuration",
        )
        super().__init__(message, **kwargs)


# Utility functions for exception handling
def wrap_ldap_exception(
    exc: Exception, server: Optional[str] = None
) -> DCQueryError:
    """
    Wrap an ldap3 exception in the DC query exception family.

    The message of the returned error is the text shown to report readers,
    so it carries the original LDAP message without decoration.

    Args:
        exc: The original exception
        server: Host name of the domain controller being queried

    Returns:
        DCQueryError: Wrapped exception attributed to the server
    """
    error_message = str(exc) or exc.__class__.__name__

    if isinstance(exc, (LDAPSocketOpenError, LDAPCommunicationError, LDAPStartTLSError)):
        return DCUnreachableError(error_message, server=server, cause=exc)
    if isinstance(
        exc,
        (LDAPBindError, LDAPInvalidCredentialsResult, LDAPInsufficientAccessRightsResult),
    ):
        return QueryDeniedError(error_message, server=server, cause=exc)
    if isinstance(exc, LDAPException):
        return DCQueryError(error_message, server=server, cause=exc)
    if isinstance(exc, (OSError, TimeoutError)):
        return DCUnreachableError(error_message, server=server, cause=exc)
    return DCQueryError(error_message, server=server, cause=exc)
