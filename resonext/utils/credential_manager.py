"""
Credential Manager Module
Stores Supabase credentials in .env and prompts for missing ones.

This is the setup screen shown when the app starts without backend credentials.
"""

import os
from pathlib import Path
from typing import Dict, Optional

import structlog
from dotenv import load_dotenv, set_key
from rich.console import Console
from rich.prompt import Confirm, Prompt

console = Console()
logger = structlog.get_logger(__name__)

SUPABASE_URL = "SUPABASE_URL"
SUPABASE_ANON_KEY = "SUPABASE_ANON_KEY"


class CredentialManager:
    """Manages backend credentials with .env storage and CLI prompting."""

    def __init__(self, env_file: Path = Path(".env")):
        """
        Initialize credential manager.

        Args:
            env_file: Path to .env file for credential storage
        """
        self.env_file = env_file
        logger.info("credential_manager_initialized", env_file=str(env_file))
        self._load_credentials()

    def _load_credentials(self) -> None:
        """Load existing credentials from .env file."""
        if self.env_file.exists():
            load_dotenv(self.env_file)
            logger.info("credentials_loaded_from_env", env_file=str(self.env_file))
            self._set_secure_permissions()
        else:
            example_file = Path(".env.example")
            if example_file.exists():
                console.print(
                    "[yellow][i] No .env file found. Creating from .env.example...[/yellow]"
                )
                logger.info("creating_env_from_example")
                self.env_file.write_text(example_file.read_text(encoding="utf-8"))
                self._set_secure_permissions()
            else:
                logger.warning("no_env_file_or_example_found")

    def _set_secure_permissions(self) -> None:
        """Restrict the .env file to its owner (Unix only)."""
        if os.name == "nt":
            logger.debug("skipping_permissions_windows", env_file=str(self.env_file))
            return
        try:
            os.chmod(self.env_file, 0o600)
            logger.info("secure_permissions_set", env_file=str(self.env_file), mode="0600")
        except OSError as e:
            console.print(
                f"[yellow][!] Could not set secure permissions on .env: {e}[/yellow]"
            )
            logger.warning(
                "failed_to_set_permissions", env_file=str(self.env_file), error=str(e)
            )

    def get_credential(
        self,
        key: str,
        prompt_message: str,
        is_password: bool = False,
        required: bool = True,
        force_prompt: bool = False,
    ) -> Optional[str]:
        """
        Get credential from environment or prompt user.

        Args:
            key: Environment variable name (e.g., "SUPABASE_URL")
            prompt_message: Message to display when prompting
            is_password: Whether to mask input
            required: Whether credential is required
            force_prompt: Prompt even if the variable is already set

        Returns:
            Credential value or None if optional and not provided

        Raises:
            ValueError: If required credential not provided
        """
        value = os.getenv(key)
        if value and not force_prompt:
            logger.debug("credential_found_in_env", key=key, is_password=is_password)
            return value

        logger.info(
            "prompting_for_credential", key=key, is_password=is_password, required=required
        )
        console.print(f"\n[yellow][*] Credential Required: {key}[/yellow]")
        console.print(f"   {prompt_message}\n")

        value = Prompt.ask("   Enter value", password=is_password).strip()

        if not value and required:
            logger.error("required_credential_not_provided", key=key)
            raise ValueError(f"Required credential not provided: {key}")

        if value:
            self._save_credential(key, value)

        return value or None

    def _save_credential(self, key: str, value: str) -> None:
        """
        Save credential to .env file and the current environment.

        Args:
            key: Environment variable name
            value: Credential value
        """
        try:
            set_key(self.env_file, key, value)
        except OSError as e:
            console.print(f"   [red][X] Failed to save credential: {e}[/red]\n")
            logger.error("failed_to_save_credential", key=key, error=str(e))
            raise
        os.environ[key] = value
        console.print(f"   [green][+] Saved {key} to .env[/green]\n")
        logger.info("credential_saved", key=key, env_file=str(self.env_file))

    def check_required_credentials(self) -> Dict[str, Optional[str]]:
        """
        Check for Supabase credentials and prompt for any that are missing.

        Returns:
            Dictionary of credential values

        Raises:
            ValueError: If required credentials are missing after prompting
        """
        logger.info("checking_credentials")
        console.print("\n[*] Checking Supabase credentials...\n")

        credentials = {
            SUPABASE_URL: self.get_credential(
                SUPABASE_URL,
                "Project URL from Supabase (Settings > API), e.g. https://xyz.supabase.co",
            ),
            SUPABASE_ANON_KEY: self.get_credential(
                SUPABASE_ANON_KEY,
                "Public anon key from Supabase (Settings > API)",
                is_password=True,
            ),
        }

        console.print("[green][+] All required credentials present[/green]\n")
        logger.info("all_credentials_present", credential_count=len(credentials))
        return credentials

    def update_credentials(self) -> None:
        """Prompt user to replace the stored credentials."""
        logger.info("updating_credentials")
        console.print("\n[*] Update Credentials\n")

        if Confirm.ask("Update Supabase credentials?", default=False):
            self.get_credential(
                SUPABASE_URL, "New Supabase project URL", force_prompt=True
            )
            self.get_credential(
                SUPABASE_ANON_KEY,
                "New Supabase anon key",
                is_password=True,
                force_prompt=True,
            )
            console.print("[green][+] Credentials updated[/green]\n")
            logger.info("credentials_update_complete")

    @staticmethod
    def mask_credential(value: str, show_chars: int = 3) -> str:
        """
        Mask credential for display.

        Args:
            value: Credential value to mask
            show_chars: Number of characters to show at start

        Returns:
            Masked credential (e.g., "eyJ***")
        """
        if not value or len(value) <= show_chars:
            return "***"
        return f"{value[:show_chars]}{'*' * (len(value) - show_chars)}"
