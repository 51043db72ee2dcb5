#!/usr/bin/env python3
"""
Tests for listing payload normalization.

Run with: python test_payloads.py
"""

import json
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent))

from log_image_renderer.config import ApiConfig
from log_image_renderer.payloads import (
    ConversationStore,
    conversation_id_from_url,
    normalize_rows,
    parse_list_payload,
    payload_signature,
)

ITEMS_URL = "https://api.openai.com/v1/dashboard/conversations/conv_abc/items?limit=20"


def listing(*rows, first_id="item_1", last_id="item_9"):
    return {"object": "list", "data": list(rows), "first_id": first_id, "last_id": last_id}


def message_row(item_id, role="user", content=None, response_id=None):
    row = {"id": f"row_{item_id}", "item": {"type": "message", "id": item_id, "role": role,
                                          "content": content or []}}
    if response_id:
        row["response_info"] = {"response_id": response_id}
    return row


def test_row_shapes():
    """Test that only message and tool-output rows are recognized."""
    rows = [
        message_row("msg_1", "assistant", [{"type": "output_text", "text": "hi"}], response_id="resp_1"),
        {"id": "row_2", "item": {"type": "computer_call_output", "id": "out_2",
                                 "output": {"image_url": "https://x.test/shot.png"}}},
        {"id": "row_3", "item": {"type": "computer_call_output", "id": "out_3",
                                 "output": {"image_url": "data:image/png;base64,AAAA"}}},
        {"id": "row_4", "item": {"type": "reasoning", "id": "rs_4"}},
        {"id": "row_5"},
        "not a row",
    ]
    records = normalize_rows(rows, "conv_abc")
    assert [r.message_id for r in records] == ["msg_1", "out_2"], f"Unexpected records {records}"

    message, tool = records
    assert message.role == "assistant"
    assert message.response_id == "resp_1"
    assert message.conversation_id == "conv_abc"
    assert tool.role == "tool", "Tool output should be attributed to the tool role"
    assert tool.content_items == [{"type": "output_image_url", "image_url": "https://x.test/shot.png"}]
    print("✓ Message and tool-output rows are normalized, others skipped")


def test_missing_fields_defaults():
    """Test id synthesis and role/content defaults."""
    records = normalize_rows([
        {"id": "row_only", "item": {"type": "message", "content": "oops"}},
        {"item": {"type": "message", "role": "user"}},
    ])
    assert records[0].message_id == "row_only", "Row id should back-fill a missing item id"
    assert records[0].role == "unknown"
    assert records[0].content_items == [], "Non-list content should become empty"
    assert records[1].message_id, "A message id should be synthesized"
    assert records[1].conversation_id == "unknown"
    print("✓ Missing fields fall back to defaults")


def test_parse_list_payload():
    """Test raw text sniffing for list payloads."""
    payload = listing(message_row("msg_1"))
    assert parse_list_payload(json.dumps(payload)) == payload
    assert parse_list_payload("  " + json.dumps(payload) + "\n") == payload, "Whitespace should be trimmed"
    assert parse_list_payload('{"object": "thing", "data": []}') is None
    assert parse_list_payload('{"object": "list", "data": {}}') is None
    assert parse_list_payload('[{"object": "list", "data": []}]') is None
    assert parse_list_payload('{"object": "list", "data": [') is None
    assert parse_list_payload("") is None
    assert parse_list_payload(None) is None
    print("✓ Only list-shaped JSON objects are accepted")


def test_conversation_id_from_url():
    """Test conversation id extraction from listing URLs."""
    regex = ApiConfig().items_path_regex
    assert conversation_id_from_url(ITEMS_URL, regex) == "conv_abc"
    assert conversation_id_from_url("/V1/Dashboard/Conversations/conv_XY/Items", regex) == "conv_XY"
    assert conversation_id_from_url("https://platform.openai.com/logs/conv_abc", regex) is None
    assert conversation_id_from_url(None, regex) is None
    print("✓ Conversation ids are read from the listing path")


def test_store_signature_dedup():
    """Test that the same listing observed twice is ingested once."""
    store = ConversationStore(ApiConfig().items_path_regex)
    payload = listing(message_row("msg_1"), message_row("msg_2"))

    first = store.ingest(payload, ITEMS_URL)
    second = store.ingest(payload, ITEMS_URL)
    assert len(first) == 2
    assert second == [], "A repeated signature should be skipped"
    assert payload_signature(payload, "conv_abc") == "conv_abc::item_1::item_9::2"
    assert store.ingest({"object": "list"}, ITEMS_URL) == [], "Malformed payloads are a no-op"
    print("✓ Payload signatures dedupe repeated listings")


def test_store_later_write_wins():
    """Test that a later record replaces an earlier one in place."""
    store = ConversationStore(ApiConfig().items_path_regex)
    store.ingest(listing(message_row("msg_1", content=[{"type": "input_text", "text": "old"}]),
                         message_row("msg_2")), ITEMS_URL)
    store.ingest(listing(message_row("msg_1", content=[{"type": "input_text", "text": "new"}]),
                         first_id="item_1", last_id="item_1"), ITEMS_URL)

    messages = store.messages("conv_abc")
    assert [m.message_id for m in messages] == ["msg_1", "msg_2"], "Replacement should keep position"
    assert messages[0].content_items == [{"type": "input_text", "text": "new"}]
    print("✓ Later payloads replace records without reordering")


def test_store_conversation_fallback():
    """Test the location and unknown fallbacks for conversation ids."""
    store = ConversationStore(ApiConfig().items_path_regex)
    store.ingest(listing(message_row("msg_1")), "https://example.test/other",
                 location="https://platform.openai.com/v1/dashboard/conversations/conv_loc/items")
    store.ingest(listing(message_row("msg_2"), first_id="x"), None)
    assert set(store.conversations()) == {"conv_loc", "unknown"}
    print("✓ Conversation id falls back to the location, then to 'unknown'")


if __name__ == '__main__':
    print("Running Payload Normalization Tests")
    print("=" * 60)
    print()

    try:
        test_row_shapes()
        test_missing_fields_defaults()
        test_parse_list_payload()
        test_conversation_id_from_url()
        test_store_signature_dedup()
        test_store_later_write_wins()
        test_store_conversation_fallback()
        print()
        print("=" * 60)
        print("All tests passed! ✓✓✓")
    except AssertionError as e:
        print(f"\n✗ Test failed: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\n✗ Unexpected error: {e}")
        sys.exit(1)
