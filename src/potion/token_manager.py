# potion/token_manager.py
"""Token storage and management."""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from .oauth_config import TokenRecord

logger = logging.getLogger(__name__)

TOKEN_FILE_NAME = "token.json"


class TokenManager:
    """Persists the single credential record as a user-only JSON file."""

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize token manager.

        Args:
            config_dir: Directory holding token.json (default: see config.get_config_dir)
        """
        if config_dir is None:
            from .config import get_config_dir

            config_dir = get_config_dir()

        self.config_dir = Path(config_dir)

    @property
    def token_path(self) -> Path:
        return self.config_dir / TOKEN_FILE_NAME

    def has_token(self) -> bool:
        return self.token_path.exists()

    def save_token(self, record: TokenRecord) -> None:
        """
        Save the credential record.

        The directory is created with 0700 and the file written with 0600.
        """
        self.config_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

        fd = os.open(self.token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(record.model_dump(exclude_none=True), f, indent=2)

        # Tighten permissions on a pre-existing file as well
        os.chmod(self.token_path, 0o600)
        logger.debug(f"Saved token to {self.token_path}")

    def load_token(self) -> Optional[TokenRecord]:
        """
        Load the credential record.

        Returns:
            The record, or None if the file is missing or unreadable
        """
        if not self.token_path.exists():
            return None

        try:
            with open(self.token_path, "r") as f:
                data = json.load(f)
            return TokenRecord.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable token file {self.token_path}: {e}")
            return None

    def delete_token(self) -> bool:
        """
        Delete the credential record.

        Returns:
            True if a file was deleted, False if there was none
        """
        try:
            self.token_path.unlink()
        except FileNotFoundError:
            return False
        return True
