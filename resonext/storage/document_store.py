"""
Document Store Module

Reads and writes the single UserDocument kept per account. Writes are
whole-document and guarded by a version counter: put() only succeeds when the
stored version still equals the version the caller loaded.

Two backends:
    SupabaseDocumentStore  PostgREST table user_data(user_email, data, version)
    LocalDocumentStore     append-only JSONL log, latest record per account wins

Example Usage:
    store = SupabaseDocumentStore(config.supabase, token_provider=auth.access_token)
    document = await store.get("ada@example.edu")
    new_version = await store.put("ada@example.edu", document, document.version)
"""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
import jsonlines
import structlog
from pydantic import ValidationError

from resonext.models.config import SupabaseConfig
from resonext.models.document import UserDocument, utc_now_iso
from resonext.utils.errors import DataLoadError, DataSaveError, VersionConflictError

logger = structlog.get_logger(__name__)

TokenProvider = Callable[[], Optional[str]]


class DocumentStore(ABC):
    """Account document persistence."""

    @abstractmethod
    async def get(self, account_id: str) -> Optional[UserDocument]:
        """
        Fetch the stored document for an account.

        Returns:
            The document with its stored version, or None if the account has none

        Raises:
            DataLoadError: If the store cannot be read
        """

    @abstractmethod
    async def put(
        self, account_id: str, document: UserDocument, expected_version: int
    ) -> int:
        """
        Store a full document.

        Args:
            account_id: Owning account
            document: Complete document to store
            expected_version: Version the caller loaded (0 if never stored or
                stored without a version)

        Returns:
            The new stored version

        Raises:
            VersionConflictError: If the stored version differs from expected_version
            DataSaveError: If the store cannot be written
        """

    async def aclose(self) -> None:
        """Release any held connections."""


def _serialize(document: UserDocument, version: int) -> dict[str, Any]:
    data = document.to_json_dict()
    data["version"] = version
    data["updatedAt"] = utc_now_iso()
    return data


def _deserialize(data: Any, version: int, source: str) -> UserDocument:
    if not isinstance(data, dict):
        raise DataLoadError(f"Stored document in {source} is not a JSON object")
    try:
        document = UserDocument.model_validate(data)
    except ValidationError as e:
        raise DataLoadError(f"Stored document in {source} is malformed: {e}") from e
    document.version = version
    document.stored = True
    return document


class SupabaseDocumentStore(DocumentStore):
    """PostgREST-backed store.

    Row-level security scopes the table to the signed-in user, so requests
    carry the user's access token (falling back to the anon key).

    Args:
        config: Supabase URL, anon key and table name
        token_provider: Returns the current access token, or None
        client: Optional pre-built httpx.AsyncClient (tests pass a MockTransport)
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        config: SupabaseConfig,
        token_provider: Optional[TokenProvider] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.config = config
        self._token_provider = token_provider or (lambda: None)
        self._client = client or httpx.AsyncClient(
            base_url=config.url, timeout=httpx.Timeout(timeout)
        )
        self._path = f"/rest/v1/{config.table}"

    def _headers(self, prefer: Optional[str] = None) -> dict[str, str]:
        token = self._token_provider() or self.config.anon_key
        headers = {
            "apikey": self.config.anon_key,
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    @staticmethod
    def _version_filter(account_id: str, expected_version: int) -> dict[str, str]:
        params = {"user_email": f"eq.{account_id}"}
        if expected_version == 0:
            # Rows written without a version column value
            params["or"] = "(version.is.null,version.eq.0)"
        else:
            params["version"] = f"eq.{expected_version}"
        return params

    async def get(self, account_id: str) -> Optional[UserDocument]:
        log = logger.bind(account=account_id, table=self.config.table)
        try:
            response = await self._client.get(
                self._path,
                params={"user_email": f"eq.{account_id}", "select": "data,version"},
                headers=self._headers(),
            )
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPStatusError as e:
            log.error("Document fetch rejected", status=e.response.status_code)
            raise DataLoadError(
                f"Fetching document failed with HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            log.error("Document fetch failed", error=str(e))
            raise DataLoadError(f"Fetching document failed: {e}") from e

        if not rows:
            log.info("No stored document")
            return None

        row = rows[0]
        document = _deserialize(row.get("data"), int(row.get("version") or 0), "user_data")
        log.info("Document fetched", version=document.version)
        return document

    async def put(
        self, account_id: str, document: UserDocument, expected_version: int
    ) -> int:
        new_version = expected_version + 1
        log = logger.bind(
            account=account_id,
            expected_version=expected_version,
            new_version=new_version,
        )
        body = {"data": _serialize(document, new_version), "version": new_version}

        try:
            if expected_version == 0 and not document.stored:
                response = await self._client.post(
                    self._path,
                    json={"user_email": account_id, **body},
                    headers=self._headers(prefer="return=representation"),
                )
                if response.status_code == 409:
                    raise VersionConflictError(account_id, expected_version)
                response.raise_for_status()
            else:
                response = await self._client.patch(
                    self._path,
                    params=self._version_filter(account_id, expected_version),
                    json=body,
                    headers=self._headers(prefer="return=representation"),
                )
                response.raise_for_status()
                if not response.json():
                    raise VersionConflictError(account_id, expected_version)
        except VersionConflictError:
            log.warning("Document version conflict")
            raise
        except httpx.HTTPStatusError as e:
            log.error("Document save rejected", status=e.response.status_code)
            raise DataSaveError(
                f"Saving document failed with HTTP {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, json.JSONDecodeError) as e:
            log.error("Document save failed", error=str(e))
            raise DataSaveError(f"Saving document failed: {e}") from e

        log.info("Document saved")
        return new_version

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalDocumentStore(DocumentStore):
    """JSONL-backed store for offline use.

    Every put() appends {"account", "version", "document"}; the record with the
    highest line number for an account is the current one.
    """

    def __init__(self, data_dir: str | Path = ".resonext") -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.data_dir / "documents.jsonl"

    def _latest(self, account_id: str) -> Optional[dict[str, Any]]:
        if not self.log_file.exists():
            return None

        latest: Optional[dict[str, Any]] = None
        try:
            with jsonlines.open(self.log_file) as reader:
                for record in reader:
                    if record.get("account") == account_id:
                        latest = record
        except (jsonlines.InvalidLineError, OSError) as e:
            raise DataLoadError(f"Corrupted document log {self.log_file}: {e}") from e
        return latest

    async def get(self, account_id: str) -> Optional[UserDocument]:
        record = self._latest(account_id)
        if record is None:
            logger.info("No stored document", account=account_id, backend="local")
            return None
        return _deserialize(
            record.get("document"), int(record.get("version") or 0), str(self.log_file)
        )

    async def put(
        self, account_id: str, document: UserDocument, expected_version: int
    ) -> int:
        try:
            record = self._latest(account_id)
        except DataLoadError as e:
            raise DataSaveError(str(e)) from e

        current_version = int(record.get("version") or 0) if record else 0
        if current_version != expected_version:
            logger.warning(
                "Document version conflict",
                account=account_id,
                expected_version=expected_version,
                stored_version=current_version,
            )
            raise VersionConflictError(account_id, expected_version)

        new_version = expected_version + 1
        try:
            with jsonlines.open(self.log_file, mode="a") as writer:
                writer.write(
                    {
                        "account": account_id,
                        "version": new_version,
                        "document": _serialize(document, new_version),
                    }
                )
        except OSError as e:
            raise DataSaveError(f"Failed to append to {self.log_file}: {e}") from e

        logger.info(
            "Document saved", account=account_id, new_version=new_version, backend="local"
        )
        return new_version
