"""
Credential Store for DOISYNC.

Keeps DataCite passwords in the operating system's credential storage via
the keyring library, so they do not have to live in environment files.
Passwords are stored per environment ("test" or "production") and username.
"""

import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError


logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """Raised when there's a problem storing or retrieving credentials."""
    pass


class CredentialStore:
    """Stores DataCite passwords in the OS credential storage."""

    SERVICE_NAME = "DOISYNC_DataCite"
    API_TYPES = ("test", "production")

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name

    def _account(self, api_type: str, username: str) -> str:
        if api_type not in self.API_TYPES:
            raise ValueError(f"Invalid api_type: {api_type}. Must be 'test' or 'production'.")
        if not username or not username.strip():
            raise ValueError("Username cannot be empty")
        return f"{api_type}:{username.strip()}"

    def save_password(self, api_type: str, username: str, password: str) -> None:
        """
        Save a DataCite password.

        Args:
            api_type: "test" or "production"
            username: DataCite username (e.g. "TIB.GFZ")
            password: DataCite password

        Raises:
            CredentialStoreError: If storage fails
            ValueError: If a parameter is invalid
        """
        account = self._account(api_type, username)
        if not password:
            raise ValueError("Password cannot be empty")

        try:
            keyring.set_password(self.service_name, account, password)
        except KeyringError as e:
            logger.error(f"Failed to store password for {account}: {e}")
            raise CredentialStoreError(f"Failed to store password: {str(e)}") from e

        logger.info(f"Password stored in credential storage for {account}")

    def get_password(self, api_type: str, username: str) -> Optional[str]:
        """
        Load a DataCite password.

        Returns:
            The password, or None if none is stored

        Raises:
            CredentialStoreError: If retrieval fails
        """
        account = self._account(api_type, username)

        try:
            password = keyring.get_password(self.service_name, account)
        except KeyringError as e:
            logger.error(f"Failed to retrieve password for {account}: {e}")
            raise CredentialStoreError(f"Failed to retrieve password: {str(e)}") from e

        if password is None:
            logger.debug(f"No stored password for {account}")
        return password

    def delete_password(self, api_type: str, username: str) -> bool:
        """
        Delete a stored DataCite password.

        Returns:
            True if deleted, False if none was stored

        Raises:
            CredentialStoreError: If deletion fails
        """
        account = self._account(api_type, username)

        try:
            keyring.delete_password(self.service_name, account)
        except PasswordDeleteError:
            logger.warning(f"Password not found in credential storage for {account}")
            return False
        except KeyringError as e:
            logger.error(f"Error deleting password for {account}: {e}")
            raise CredentialStoreError(f"Failed to delete password: {str(e)}") from e

        logger.info(f"Password deleted from credential storage for {account}")
        return True
