"""LDAP connection helpers shared by the forest collectors."""

from typing import Any, List, Optional

from ldap3 import ANONYMOUS, DSA, NTLM, SIMPLE, Connection, Server
from ldap3.utils.dn import to_dn

from ..config_manager import LdapConfig

_AUTHENTICATIONS = {"NTLM": NTLM, "SIMPLE": SIMPLE, "ANONYMOUS": ANONYMOUS}


def create_ldap_connection(config: LdapConfig, host_name: str) -> Connection:
    """Open a bound, read-only connection to a directory server.

    The root DSE is read on bind so that naming contexts are available on
    ``connection.server.info``.
    """
    server = Server(
        host_name,
        port=config.port,
        use_ssl=config.use_ssl,
        get_info=DSA,
        connect_timeout=config.timeout,
    )
    return Connection(
        server,
        user=config.user or None,
        password=config.password or None,
        authentication=_AUTHENTICATIONS[config.authentication],
        auto_bind=True,
        receive_timeout=config.timeout,
        read_only=True,
    )


def first_value(value: Any) -> Any:
    """Return the first value of a possibly multi-valued attribute."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def root_dse_value(connection: Any, name: str) -> Optional[str]:
    info = getattr(connection.server, "info", None)
    other = getattr(info, "other", None) or {}
    value = first_value(other.get(name))
    return str(value) if value is not None else None


def dn_components(dn: str) -> List[str]:
    """Split a DN into its RDN strings, honoring escaped separators."""
    return to_dn(dn)


def parent_dn(dn: str) -> str:
    return ",".join(dn_components(dn)[1:])


def rdn_value(rdn: str) -> str:
    return rdn.split("=", 1)[1] if "=" in rdn else rdn
