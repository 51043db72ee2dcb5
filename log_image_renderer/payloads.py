"""
Normalization of conversation listing payloads into MessageRecords.
"""
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Pattern
from urllib.parse import urlparse

from .models import UNKNOWN_CONVERSATION, OUTPUT_IMAGE_URL, MessageRecord, is_http_url

logger = logging.getLogger(__name__)


def is_list_payload(payload: Any) -> bool:
    return (
        isinstance(payload, dict)
        and payload.get("object") == "list"
        and isinstance(payload.get("data"), list)
    )


def parse_list_payload(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Parses raw text as a listing payload.
    Returns None for anything that is not a JSON object of the list shape.
    """
    if not text or '"object"' not in text or '"data"' not in text:
        return None
    trimmed = text.strip()
    if not (trimmed.startswith("{") and trimmed.endswith("}")):
        return None
    try:
        parsed = json.loads(trimmed)
    except ValueError as e:
        logger.debug(f"JSON parse skipped: {e}")
        return None
    return parsed if is_list_payload(parsed) else None


def conversation_id_from_url(url: Optional[str], path_regex: Pattern) -> Optional[str]:
    if not url:
        return None
    try:
        path = urlparse(url).path
    except ValueError:
        return None
    match = path_regex.search(path)
    return match.group(1) if match else None


def _new_message_id() -> str:
    return uuid.uuid4().hex


def _response_id(row: Dict[str, Any]) -> Optional[str]:
    info = row.get("response_info")
    if isinstance(info, dict) and info.get("response_id"):
        return str(info["response_id"])
    return None


def normalize_rows(rows: Any, conversation_id: Optional[str] = None, anchor: Any = None) -> List[MessageRecord]:
    """
    Converts listing rows into MessageRecords.

    Only message rows and computer tool outputs carrying an image URL are
    recognized; every other row shape is skipped.
    """
    conversation_id = conversation_id or UNKNOWN_CONVERSATION
    records: List[MessageRecord] = []
    for row in rows if isinstance(rows, list) else []:
        if not isinstance(row, dict):
            continue
        item = row.get("item")
        if not isinstance(item, dict):
            continue

        message_id = item.get("id") or row.get("id") or _new_message_id()
        if item.get("type") == "message":
            content = item.get("content")
            records.append(MessageRecord(
                message_id=str(message_id),
                role=str(item.get("role") or "unknown"),
                content_items=list(content) if isinstance(content, list) else [],
                response_id=_response_id(row),
                conversation_id=conversation_id,
                anchor=anchor,
            ))
        elif item.get("type") == "computer_call_output":
            output = item.get("output")
            image_url = output.get("image_url") if isinstance(output, dict) else None
            if is_http_url(image_url):
                records.append(MessageRecord(
                    message_id=str(message_id),
                    role="tool",
                    content_items=[{"type": OUTPUT_IMAGE_URL, "image_url": image_url}],
                    response_id=_response_id(row),
                    conversation_id=conversation_id,
                    anchor=anchor,
                ))
    return records


def payload_signature(payload: Dict[str, Any], conversation_id: Optional[str]) -> str:
    first = payload.get("first_id") or ""
    last = payload.get("last_id") or ""
    return f"{conversation_id or UNKNOWN_CONVERSATION}::{first}::{last}::{len(payload.get('data') or [])}"


class ConversationStore:
    """
    Captured messages keyed by conversation, in first-seen order.

    A later record with the same message id replaces the earlier one in place.
    """

    def __init__(self, path_regex: Pattern):
        self._path_regex = path_regex
        self._messages: Dict[str, Dict[str, MessageRecord]] = {}
        self._seen_signatures = set()

    def conversation_for(self, request_url: Optional[str], location: Optional[str] = None) -> str:
        return (
            conversation_id_from_url(request_url, self._path_regex)
            or conversation_id_from_url(location, self._path_regex)
            or UNKNOWN_CONVERSATION
        )

    def ingest(self, payload: Any, request_url: Optional[str], location: Optional[str] = None) -> List[MessageRecord]:
        """
        Normalizes and stores one listing payload.
        Returns the records it contributed; empty when rejected or already seen.
        """
        if not is_list_payload(payload):
            return []
        conversation_id = self.conversation_for(request_url, location)
        signature = payload_signature(payload, conversation_id)
        if signature in self._seen_signatures:
            logger.debug(f"Skipping already seen payload {signature}")
            return []
        self._seen_signatures.add(signature)

        records = normalize_rows(payload["data"], conversation_id)
        if not records:
            return []
        bucket = self._messages.setdefault(conversation_id, {})
        for record in records:
            bucket[record.message_id] = record
        logger.info(f"Captured {len(records)} message(s) for conversation {conversation_id}")
        return records

    def conversations(self) -> Dict[str, List[MessageRecord]]:
        return {conv: list(bucket.values()) for conv, bucket in self._messages.items()}

    def messages(self, conversation_id: str) -> List[MessageRecord]:
        return list(self._messages.get(conversation_id, {}).values())

    def clear(self) -> None:
        self._messages.clear()
        self._seen_signatures.clear()
