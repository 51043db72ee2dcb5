"""
Placement of captured messages onto elements already present in the page.
"""
import dataclasses
import logging
from typing import Any, Dict, List, Optional, Sequence

from .matching import ResponseBlockContext, UiBlock, normalize_match_text, select_block
from .models import MessageRecord
from .page import PageAdapter

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Maps messages to anchors in two passes.

    The direct pass looks for an element carrying the message id in an
    identity attribute. Failing that, a message with a response id is matched
    against the blocks of that response's card. Card blocks are read once per
    pass and no block is handed to two messages within the same pass.
    """

    def __init__(self, page: PageAdapter):
        self._page = page

    async def _response_context(self, response_id: str) -> ResponseBlockContext:
        card = await self._page.find_response_card(response_id)
        if card is None:
            logger.debug(f"No response card found for {response_id}")
            return ResponseBlockContext(blocks=[])
        raw = await self._page.read_blocks(card)
        blocks = [
            UiBlock(index, role.strip().lower(), normalize_match_text(body), element)
            for index, (role, body, element) in enumerate(raw)
        ]
        return ResponseBlockContext(blocks=blocks)

    async def find_anchor(self, message: MessageRecord,
                          contexts: Dict[str, ResponseBlockContext]) -> Optional[Any]:
        anchor = await self._page.find_by_identity(message.message_id)
        if anchor is not None or not message.response_id:
            return anchor

        context = contexts.get(message.response_id)
        if context is None:
            context = await self._response_context(message.response_id)
            contexts[message.response_id] = context
        block = select_block(message, context.blocks, context.used)
        return block.element if block is not None else None

    async def reconcile(self, messages: Sequence[MessageRecord]) -> List[MessageRecord]:
        """Returns copies of ``messages`` with their anchors assigned for this pass."""
        contexts: Dict[str, ResponseBlockContext] = {}
        placed = []
        for message in messages:
            anchor = await self.find_anchor(message, contexts)
            placed.append(dataclasses.replace(message, anchor=anchor))
        anchored = sum(1 for m in placed if m.anchor is not None)
        logger.debug(f"Reconciled {anchored}/{len(placed)} message(s) to page anchors")
        return placed
