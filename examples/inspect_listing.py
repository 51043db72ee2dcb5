#!/usr/bin/env python3
"""
Example: List the image candidates in a saved conversation listing

Takes a JSON file saved from the browser's network panel (the response of a
``/v1/dashboard/conversations/<id>/items`` request) and prints the images
the renderer would show, without opening a browser.
"""

import json
import sys
from pathlib import Path

from tabulate import tabulate

# Add parent directory to path to import log_image_renderer
sys.path.insert(0, str(Path(__file__).parent.parent))

from log_image_renderer.candidates import CandidateExtractor
from log_image_renderer.payloads import is_list_payload, normalize_rows


async def no_lookup(file_id, conversation_id=None):
    return None


def main():
    if len(sys.argv) < 2:
        print("Usage: python inspect_listing.py listing.json")
        sys.exit(1)

    with open(sys.argv[1], 'r', encoding='utf-8') as f:
        payload = json.load(f)
    if not is_list_payload(payload):
        print("✗ Not a conversation listing (expected object == 'list' with a data array)")
        sys.exit(1)

    messages = normalize_rows(payload["data"])
    candidates = CandidateExtractor(no_lookup).extract(messages)
    print(f"Messages: {len(messages)}, image candidates: {len(candidates)}\n")

    rows = [
        [c.message.message_id, c.message.role, c.source_type, c.source_value, c.fallback_note or ""]
        for c in candidates
    ]
    print(tabulate(rows, headers=["Message ID", "Role", "Source Type", "Source", "Note"], tablefmt="grid"))


if __name__ == '__main__':
    main()
