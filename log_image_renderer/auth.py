"""
Credential material captured from the host page's own requests.

Two granularities are kept: the last values seen on any request, and a
snapshot per conversation taken from that conversation's listing request.
Scoped values win per header when building lookup headers.
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .models import UNKNOWN_CONVERSATION

logger = logging.getLogger(__name__)

AUTHORIZATION = "authorization"
ORGANIZATION = "openai-organization"
PROJECT = "openai-project"

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def header_value(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    """Case-insensitive header lookup; empty values count as missing."""
    if not headers:
        return None
    target = name.lower()
    for key, value in headers.items():
        if str(key).lower() == target and value is not None:
            value = str(value).strip()
            return value or None
    return None


def extract_bearer_token(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    match = _BEARER_RE.match(value)
    if not match:
        return None
    return match.group(1).strip() or None


@dataclass
class ScopedHeaders:
    authorization: Optional[str] = None
    organization: Optional[str] = None
    project: Optional[str] = None


class AuthContext:
    def __init__(self):
        self.bearer_token: Optional[str] = None
        self.organization: Optional[str] = None
        self.project: Optional[str] = None
        self._scoped: Dict[str, ScopedHeaders] = {}

    def remember(self, headers: Optional[Mapping[str, str]]) -> None:
        """Updates the process-wide fallback from any request's headers."""
        token = extract_bearer_token(header_value(headers, AUTHORIZATION))
        if token and token != self.bearer_token:
            self.bearer_token = token
            logger.debug("Captured bearer token from page request headers.")

        org = header_value(headers, ORGANIZATION)
        if org and org != self.organization:
            self.organization = org
            logger.debug("Captured organization header from page request headers.")

        project = header_value(headers, PROJECT)
        if project and project != self.project:
            self.project = project
            logger.debug("Captured project header from page request headers.")

    def remember_scoped(self, conversation_id: Optional[str], headers: Optional[Mapping[str, str]]) -> None:
        """
        Snapshots a listing request's headers for its conversation.

        Fields missing from this request keep the previous snapshot's value.
        """
        conversation_id = conversation_id or UNKNOWN_CONVERSATION
        previous = self._scoped.get(conversation_id) or ScopedHeaders()
        snapshot = ScopedHeaders(
            authorization=header_value(headers, AUTHORIZATION) or previous.authorization,
            organization=header_value(headers, ORGANIZATION) or previous.organization,
            project=header_value(headers, PROJECT) or previous.project,
        )
        self._scoped[conversation_id] = snapshot

        fallback = {}
        if snapshot.authorization:
            fallback[AUTHORIZATION] = snapshot.authorization
        if snapshot.organization:
            fallback[ORGANIZATION] = snapshot.organization
        if snapshot.project:
            fallback[PROJECT] = snapshot.project
        self.remember(fallback)

    def scoped(self, conversation_id: str) -> Optional[ScopedHeaders]:
        return self._scoped.get(conversation_id)

    def headers_for(self, conversation_id: Optional[str]) -> Dict[str, str]:
        scoped = self._scoped.get(conversation_id or UNKNOWN_CONVERSATION) or ScopedHeaders()
        headers: Dict[str, str] = {}

        if scoped.authorization:
            headers["Authorization"] = scoped.authorization
        elif self.bearer_token:
            headers["Authorization"] = f"Bearer {self.bearer_token}"

        organization = scoped.organization or self.organization
        if organization:
            headers["OpenAI-Organization"] = organization

        project = scoped.project or self.project
        if project:
            headers["OpenAI-Project"] = project
        return headers

    def reset_for_location_change(self) -> None:
        """Drops conversation-scoped material; the bearer token survives."""
        if self._scoped or self.organization or self.project:
            logger.debug("Location changed; clearing scoped headers for recapture.")
        self._scoped.clear()
        self.organization = None
        self.project = None

    def clear(self) -> None:
        self.reset_for_location_change()
        self.bearer_token = None
