"""Selection of the DataCite environment (test or production) for an operation."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Tuple, Union

from doisync.utils.settings import RegistrySettings


logger = logging.getLogger(__name__)


class PrivilegeLevel(Enum):
    """Privilege of the user on whose behalf an operation runs."""

    ADMIN = "admin"
    GROUP_LEADER = "group_leader"
    CURATOR = "curator"
    BEGINNER = "beginner"

    @property
    def is_restricted(self) -> bool:
        """Restricted users may only ever register test DOIs."""
        return self is PrivilegeLevel.BEGINNER

    @classmethod
    def parse(cls, value: Union['PrivilegeLevel', str, None]) -> 'PrivilegeLevel':
        """
        Convert a role value into a privilege level.

        Missing or unknown roles map to the restricted level.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower().replace(" ", "_").replace("-", "_")
            for level in cls:
                if level.value == normalized:
                    return level
        logger.warning(f"Unknown privilege level {value!r}, treating caller as restricted")
        return cls.BEGINNER


@dataclass(frozen=True)
class Credentials:
    """DataCite account; the password never shows up in reprs or logs."""
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class EnvironmentContext:
    """Endpoint, credentials and prefixes resolved for one operation."""
    name: str
    is_test_mode: bool
    endpoint: str
    credentials: Credentials
    allowed_prefixes: Tuple[str, ...]

    def allows_prefix(self, prefix: str) -> bool:
        return prefix in self.allowed_prefixes

    def get_allowed_prefixes(self) -> List[str]:
        return list(self.allowed_prefixes)


def requires_test_environment(global_test_mode: bool, privilege: PrivilegeLevel) -> bool:
    """
    Decide whether an operation must run against the test environment.

    Only a non-restricted caller with global test mode disabled may reach
    production. Restricted (beginner) callers are always confined to the
    test environment, whatever the global configuration says.

    Args:
        global_test_mode: Global DataCite test mode flag
        privilege: Privilege level of the caller

    Returns:
        True if the test environment must be used
    """
    if global_test_mode:
        return True
    return PrivilegeLevel.parse(privilege).is_restricted


def resolve_environment(settings: RegistrySettings, privilege: Any) -> EnvironmentContext:
    """
    Resolve the environment context for a caller.

    Args:
        settings: Configuration snapshot
        privilege: PrivilegeLevel or role string of the caller

    Returns:
        EnvironmentContext of the test or production environment
    """
    level = PrivilegeLevel.parse(privilege)
    use_test = requires_test_environment(settings.test_mode, level)
    environment = settings.test if use_test else settings.production

    return EnvironmentContext(
        name=environment.name,
        is_test_mode=use_test,
        endpoint=environment.endpoint,
        credentials=Credentials(environment.username, environment.password),
        allowed_prefixes=tuple(environment.prefixes)
    )


class EnvironmentSelector:
    """Resolves environment contexts from one configuration snapshot."""

    def __init__(self, settings: RegistrySettings):
        self.settings = settings

    def is_test_mode(self, privilege: Any) -> bool:
        return requires_test_environment(self.settings.test_mode, PrivilegeLevel.parse(privilege))

    def resolve(self, privilege: Any) -> EnvironmentContext:
        """
        Resolve the environment context for a caller.

        Args:
            privilege: PrivilegeLevel or role string of the caller

        Returns:
            EnvironmentContext for the operation
        """
        level = PrivilegeLevel.parse(privilege)
        context = resolve_environment(self.settings, level)

        if context.is_test_mode and not self.settings.test_mode:
            logger.info(
                f"Forcing DataCite test mode for {level.value} user (safety restriction)"
            )

        if not context.credentials.username or not context.credentials.password:
            logger.error(
                f"DataCite {context.name} credentials missing "
                f"(username empty: {not context.credentials.username}, "
                f"password empty: {not context.credentials.password})"
            )

        logger.debug(
            f"DataCite environment resolved: {context.name} ({context.endpoint}), "
            f"prefixes: {', '.join(context.allowed_prefixes)}"
        )
        return context
