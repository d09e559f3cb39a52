"""Configuration of the DataCite test and production environments."""

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from dotenv import load_dotenv

from doisync.api.exceptions import ConfigurationError
from doisync.utils.credential_store import CredentialStore, CredentialStoreError


logger = logging.getLogger(__name__)


PRODUCTION_ENDPOINT = "https://api.datacite.org"
TEST_ENDPOINT = "https://api.test.datacite.org"
PRODUCTION_PREFIXES = ("10.5880", "10.26026", "10.14470")
TEST_PREFIXES = ("10.83279", "10.83186", "10.83114")
MAX_PAGES = 10000

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass(frozen=True)
class EnvironmentSettings:
    """Endpoint, account and allowed prefixes of one DataCite environment."""
    name: str  # "test" or "production"
    endpoint: str
    username: str = ""
    password: str = field(default="", repr=False)
    prefixes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RegistrySettings:
    """
    Immutable snapshot of the registry configuration.

    Operations read the snapshot they were started with, so configuration
    reloads never affect a running operation.
    """
    production: EnvironmentSettings
    test: EnvironmentSettings
    test_mode: bool = True
    client_id: str = ""
    max_pages: int = MAX_PAGES

    def __post_init__(self):
        shared = set(self.production.prefixes) & set(self.test.prefixes)
        if shared:
            raise ConfigurationError(
                "DOI prefixes must not be configured for both test and production",
                prefixes=", ".join(sorted(shared))
            )
        if self.max_pages < 1:
            raise ConfigurationError("DATACITE_MAX_PAGES must be at least 1")


def parse_bool(value: Optional[str], default: bool) -> bool:
    """Parse a boolean environment value."""
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean value: {value!r}")


def parse_prefixes(value: Optional[str], default: Tuple[str, ...]) -> Tuple[str, ...]:
    """Parse a comma separated prefix list, keeping order and dropping duplicates."""
    if value is None or not value.strip():
        return default
    prefixes = []
    for prefix in value.split(","):
        prefix = prefix.strip()
        if prefix and prefix not in prefixes:
            prefixes.append(prefix)
    return tuple(prefixes)


def _load_environment(
    name: str,
    env: Mapping[str, str],
    default_endpoint: str,
    default_prefixes: Tuple[str, ...],
    credential_store: Optional[CredentialStore]
) -> EnvironmentSettings:
    key = name.upper()
    username = env.get(f"DATACITE_{key}_USERNAME", "").strip()
    password = env.get(f"DATACITE_{key}_PASSWORD", "")

    if username and not password and credential_store is not None:
        try:
            password = credential_store.get_password(name, username) or ""
        except CredentialStoreError as e:
            logger.warning(f"Could not load {name} password from credential storage: {e}")

    if not username or not password:
        logger.warning(
            f"DataCite {name} credentials incomplete "
            f"(username empty: {not username}, password empty: {not password})"
        )

    return EnvironmentSettings(
        name=name,
        endpoint=env.get(f"DATACITE_{key}_ENDPOINT", "").strip().rstrip('/') or default_endpoint,
        username=username,
        password=password,
        prefixes=parse_prefixes(env.get(f"DATACITE_{key}_PREFIXES"), default_prefixes)
    )


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    credential_store: Optional[CredentialStore] = None,
    use_keyring: bool = True
) -> RegistrySettings:
    """
    Load the registry configuration.

    Reads the process environment (after loading a ``.env`` file) unless a
    mapping is given. Missing passwords are looked up in the OS credential
    storage.

    Args:
        env: Optional mapping used instead of os.environ
        credential_store: Store for password lookups
        use_keyring: Set to False to skip credential storage lookups

    Returns:
        RegistrySettings snapshot

    Raises:
        ConfigurationError: If a value is invalid or prefixes overlap
    """
    if env is None:
        load_dotenv()
        env = os.environ

    if use_keyring and credential_store is None:
        credential_store = CredentialStore()
    elif not use_keyring:
        credential_store = None

    production = _load_environment(
        "production", env, PRODUCTION_ENDPOINT, PRODUCTION_PREFIXES, credential_store
    )
    test = _load_environment("test", env, TEST_ENDPOINT, TEST_PREFIXES, credential_store)

    max_pages_value = env.get("DATACITE_MAX_PAGES", "").strip()
    try:
        max_pages = int(max_pages_value) if max_pages_value else MAX_PAGES
    except ValueError as e:
        raise ConfigurationError(f"Invalid DATACITE_MAX_PAGES: {max_pages_value!r}") from e

    settings = RegistrySettings(
        production=production,
        test=test,
        test_mode=parse_bool(env.get("DATACITE_TEST_MODE"), True),
        client_id=env.get("DATACITE_CLIENT_ID", "").strip(),
        max_pages=max_pages
    )

    logger.debug(
        f"DataCite configuration loaded (test mode: {settings.test_mode}, "
        f"production: {production.endpoint}, test: {test.endpoint})"
    )
    return settings
