import time
import base64
import random
import threading
from dataclasses import dataclass
from typing import Any, List, Optional
from urllib.parse import quote

import requests

from methodrag.utils.config_handler import config
from methodrag.utils.error_handler import (
    ConfigurationError,
    InvalidRecordError,
    OperationCancelledError,
    ProviderUnavailableError,
    RateLimitedError,
    RemoteNotFoundError,
)
from methodrag.utils.logger import get_logger

logger = get_logger(__name__)

@dataclass
class RemoteFile:
    name: str
    path: str
    type: str
    sha: str = ""
    size: int = 0

class GitHubRepository:
    """Read-only client for the GitHub contents API of one repository."""

    provider_name = "github"

    def __init__(
        self,
        repo_ref: str = None,
        token: str = None,
        ref: str = None,
        timeout: float = None,
        max_retries: int = None,
        base_delay: float = None,
        api_url: str = "https://api.github.com",
        session: Optional[requests.Session] = None
    ):
        """Initialize the client for an 'owner/name' repository reference."""
        self.repo_ref = repo_ref or config.get("sync.repo")
        parts = (self.repo_ref or "").split("/")
        if len(parts) != 2 or not all(parts):
            raise ConfigurationError(
                f"Repository reference must look like 'owner/name', got {self.repo_ref!r}"
            )
        self.owner, self.name = parts
        self.token = token or config.get("sync.token")
        self.ref = ref or config.get("sync.ref")
        self.timeout = timeout or config.get("sync.timeout", 15)
        self.max_retries = max(1, max_retries or config.get("sync.max_retries", 3))
        self.base_delay = base_delay if base_delay is not None else config.get("sync.base_delay", 1)
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()

    def _headers(self) -> dict:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "methodrag-sync",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _contents_url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.name}/contents/{quote(path.strip('/'))}"

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError("Remote request cancelled")

    def _wait(self, delay: float, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None:
            if cancel_event.wait(delay):
                raise OperationCancelledError("Remote request cancelled")
        else:
            time.sleep(delay)

    def _raise_for_status(self, response: requests.Response, path: str) -> None:
        status = response.status_code
        if status == 404:
            raise RemoteNotFoundError(f"Not found in {self.repo_ref}: {path}", {"path": path})
        if status == 429 or (status == 403 and response.headers.get("X-RateLimit-Remaining") == "0"):
            retry_after = response.headers.get("Retry-After")
            reset = response.headers.get("X-RateLimit-Reset")
            if retry_after and retry_after.isdigit():
                wait = float(retry_after)
            elif reset and reset.isdigit():
                wait = max(0.0, float(reset) - time.time())
            else:
                wait = None
            raise RateLimitedError(self.provider_name, "GitHub API rate limit reached",
                                   retry_after=wait, details={"path": path})
        if status in (401, 403):
            raise ProviderUnavailableError(
                self.provider_name, f"GitHub authentication failed ({status})",
                {"path": path, "status": status}
            )
        raise ProviderUnavailableError(
            self.provider_name, f"GitHub API error {status}", {"path": path, "status": status}
        )

    def _json_body(self, response: requests.Response, path: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderUnavailableError(
                self.provider_name, f"GitHub returned a non-JSON response for {path}",
                {"path": path, "error": str(e)}
            ) from e

    def _get(self, url: str, path: str, cancel_event: Optional[threading.Event] = None,
             raw: bool = False) -> Any:
        """GET with retries on transport errors and 5xx responses."""
        params = {"ref": self.ref} if self.ref and not raw else None
        last_error = None
        for attempt in range(self.max_retries):
            self._check_cancelled(cancel_event)
            try:
                response = self.session.get(
                    url, headers=self._headers(), params=params, timeout=self.timeout
                )
            except requests.RequestException as e:
                last_error = str(e)
                logger.warning(f"Attempt {attempt + 1} for {path} failed: {last_error}")
            else:
                if response.status_code == 200:
                    return response.text if raw else self._json_body(response, path)
                if response.status_code < 500:
                    self._raise_for_status(response, path)
                last_error = f"GitHub API error {response.status_code}"
                logger.warning(f"Attempt {attempt + 1} for {path} failed: {last_error}")

            if attempt < self.max_retries - 1:
                delay = (self.base_delay * 2 ** attempt) + (random.randint(0, 1000) / 1000)
                logger.info(f"Retrying in {delay:.2f} seconds...")
                self._wait(delay, cancel_event)

        raise ProviderUnavailableError(
            self.provider_name,
            f"Failed after {self.max_retries} attempts: {last_error}",
            {"path": path}
        )

    def list_files(self, path: str, cancel_event: Optional[threading.Event] = None) -> List[RemoteFile]:
        """
        List the entries of a repository directory.

        Args:
            path: Directory path inside the repository
            cancel_event: Optional cancellation signal

        Returns:
            RemoteFile descriptors

        Raises:
            RemoteNotFoundError: If the path is missing or not a directory
            ProviderUnavailableError: On auth or network failure
            RateLimitedError: When GitHub throttles the client
        """
        data = self._get(self._contents_url(path), path, cancel_event)
        if not isinstance(data, list):
            raise RemoteNotFoundError(f"{path} is not a directory in {self.repo_ref}", {"path": path})
        return [
            RemoteFile(
                name=item.get("name", ""),
                path=item.get("path", ""),
                type=item.get("type", ""),
                sha=item.get("sha", ""),
                size=int(item.get("size") or 0),
            )
            for item in data
        ]

    def get_file_content(self, path: str, cancel_event: Optional[threading.Event] = None) -> str:
        """Fetch and decode the text of one repository file."""
        data = self._get(self._contents_url(path), path, cancel_event)
        if not isinstance(data, dict) or data.get("type") != "file":
            raise RemoteNotFoundError(f"{path} is not a file in {self.repo_ref}", {"path": path})

        if data.get("encoding") == "base64" and data.get("content"):
            try:
                return base64.b64decode(data["content"]).decode("utf-8")
            except ValueError as e:
                # binascii.Error and UnicodeDecodeError are both ValueErrors
                raise InvalidRecordError("parse", f"{path} is not UTF-8 text",
                                         {"path": path, "error": str(e)}) from e

        # Files above the contents API size limit come back without inline content
        download_url = data.get("download_url")
        if not download_url:
            raise ProviderUnavailableError(self.provider_name, f"No content returned for {path}",
                                           {"path": path})
        return self._get(download_url, path, cancel_event, raw=True)
