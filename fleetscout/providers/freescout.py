"""FreeScout REST API client."""

from urllib.parse import urlparse

import httpx
import structlog

from fleetscout.models import FreeScoutOptions
from fleetscout.providers.base import TicketClient

API_KEY_HEADER = "X-FreeScout-API-Key"
RESOURCE_ID_HEADER = "Resource-ID"

logger = structlog.get_logger()


class FreeScoutConfigError(ValueError):
    pass


class FreeScoutAPIError(RuntimeError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"freescout request failed: status {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class FreeScoutClient(TicketClient):
    def __init__(self, options: FreeScoutOptions, timeout: float = 30) -> None:
        if not options.url:
            raise FreeScoutConfigError("missing FreeScout URL")
        parsed = urlparse(options.url)
        if not parsed.scheme or not parsed.netloc:
            raise FreeScoutConfigError(f"invalid FreeScout URL: {options.url!r}")
        self._options = options
        self._timeout = timeout
        self._headers = {
            API_KEY_HEADER: options.api_token.get_secret_value(),
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    @property
    def options(self) -> FreeScoutOptions:
        return self._options

    def _check(self, response: httpx.Response) -> httpx.Response:
        if not response.is_success:
            raise FreeScoutAPIError(response.status_code, response.text.strip())
        return response

    def _get(self, path: str, params: dict | None = None) -> dict:
        response = httpx.get(
            f"{self._options.url}{path}",
            headers=self._headers,
            params=params or {},
            timeout=self._timeout,
        )
        return self._check(response).json()

    def _post(self, path: str, body: dict) -> httpx.Response:
        response = httpx.post(
            f"{self._options.url}{path}",
            headers=self._headers,
            json=body,
            timeout=self._timeout,
        )
        return self._check(response)

    def _customer(self) -> dict:
        return {"email": self._options.customer_email}

    def _thread(self, text: str) -> dict:
        return {"type": "customer", "text": text, "customer": self._customer()}

    def find_conversation(self, subject: str) -> int | None:
        """Return the id of an active conversation in the mailbox with exactly this subject."""
        # Oldest-updated match first, one per page.
        data = self._get(
            "/api/conversations",
            params={
                "mailboxId": self._options.mailbox_id,
                "status": "active",
                "subject": subject,
                "sortField": "updatedAt",
                "sortOrder": "asc",
                "pageSize": 1,
            },
        )
        for conversation in data.get("_embedded", {}).get("conversations", []):
            if conversation.get("subject") == subject:
                return int(conversation["id"])
        return None

    def add_thread(self, conversation_id: int, text: str) -> None:
        body = self._thread(text)
        body["imported"] = True
        self._post(f"/api/conversations/{conversation_id}/threads", body)

    def create_conversation(self, subject: str, body: str) -> int:
        existing = self.find_conversation(subject)
        if existing is not None:
            self.add_thread(existing, body)
            logger.debug("freescout_thread_added", conversation_id=existing)
            return existing

        payload: dict = {
            "type": "email",
            "mailboxId": self._options.mailbox_id,
            "subject": subject,
            "customer": self._customer(),
            "threads": [self._thread(body)],
            "imported": True,
            "status": "active",
        }
        if self._options.assign_to > 0:
            payload["assignTo"] = self._options.assign_to

        response = self._post("/api/conversations", payload)
        resource_id = response.headers.get(RESOURCE_ID_HEADER, "")
        try:
            return int(resource_id)
        except ValueError:
            return 0

    def config_matches(self, options: FreeScoutOptions) -> bool:
        return self._options == options
