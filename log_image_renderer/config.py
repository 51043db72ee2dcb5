"""
Configuration for the log image renderer.

Defaults live in module constants; ``load_config`` overlays a JSON file on top.
"""
import json
import logging
import re
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Pattern, Tuple

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
TARGET_URL = "https://platform.openai.com/logs"
MAX_IMAGE_WIDTH_PX = 420
BORDER_RADIUS_PX = 10
MUTATION_DEBOUNCE_MS = 150
MAX_SCAN_PER_CYCLE = 200
FILE_RETRY_COOLDOWN_SECONDS = 30
LOOKUP_TIMEOUT_SECONDS = 15
PLACEHOLDER_WINDOW = 3
PLACEHOLDER_MARKER = "[ANNOTATED_IMAGE]"
MARKDOWN_IMAGE_PATTERN = r"!\[[^\]]*]\((https?://[^)\s]+)\)"
DASHBOARD_ITEMS_PATH_PATTERN = r"/v1/dashboard/conversations/(conv_[^/?#]+)/items"
DOWNLOAD_LINK_TEMPLATE = "https://api.openai.com/v1/internal/files/{file_id}/download_link"

# Identity attributes tried in priority order by the direct pass.
IDENTITY_ATTRIBUTE_RULES: List[Tuple[str, str]] = [
    ("data-message-id", "="),
    ("data-message-id", "*="),
    ("data-id", "="),
    ("data-id", "*="),
    ("id", "*="),
]

PAYLOAD_CONTAINER_SELECTORS = ["pre", "code", "[data-testid]", "article", "section", "div"]


@dataclass
class UiConfig:
    max_image_width_px: int = MAX_IMAGE_WIDTH_PX
    border_radius_px: int = BORDER_RADIUS_PX
    show_caption: bool = True


@dataclass
class ObservationConfig:
    mutation_debounce_ms: int = MUTATION_DEBOUNCE_MS
    max_scan_per_cycle: int = MAX_SCAN_PER_CYCLE


@dataclass
class FeatureFlags:
    render_markdown_images: bool = True
    render_input_image_by_file_id: bool = True
    render_annotated_image_placeholder: bool = True


@dataclass
class ApiConfig:
    dashboard_items_path_pattern: str = DASHBOARD_ITEMS_PATH_PATTERN
    download_link_template: str = DOWNLOAD_LINK_TEMPLATE
    retry_cooldown_seconds: float = FILE_RETRY_COOLDOWN_SECONDS
    lookup_timeout_seconds: float = LOOKUP_TIMEOUT_SECONDS

    @property
    def items_path_regex(self) -> Pattern:
        return re.compile(self.dashboard_items_path_pattern, re.IGNORECASE)


@dataclass
class ExtractionConfig:
    markdown_image_pattern: str = MARKDOWN_IMAGE_PATTERN
    placeholder_marker: str = PLACEHOLDER_MARKER
    placeholder_window: int = PLACEHOLDER_WINDOW

    @property
    def markdown_regex(self) -> Pattern:
        return re.compile(self.markdown_image_pattern, re.IGNORECASE | re.MULTILINE)


@dataclass
class PageSelectors:
    """
    CSS selectors for the host page's response cards.

    The class names are generated by the host application's build and change
    between releases, so they are configuration rather than code.
    """
    response_id_marker: str = "span.zxtJj"
    response_card: str = "div._7ho-7"
    message_block: str = ".nyCLx .zl9Lq"
    block_role: str = ".Ykd-p"
    block_body: str = ".EWWAC"
    identity_rules: List[Tuple[str, str]] = field(
        default_factory=lambda: list(IDENTITY_ATTRIBUTE_RULES)
    )
    payload_containers: List[str] = field(
        default_factory=lambda: list(PAYLOAD_CONTAINER_SELECTORS)
    )


@dataclass
class RendererConfig:
    ui: UiConfig = field(default_factory=UiConfig)
    observation: ObservationConfig = field(default_factory=ObservationConfig)
    features: FeatureFlags = field(default_factory=FeatureFlags)
    api: ApiConfig = field(default_factory=ApiConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    selectors: PageSelectors = field(default_factory=PageSelectors)
    debug: bool = False


def _apply_overrides(target: Any, overrides: Dict[str, Any], path: str = "") -> None:
    known = {f.name: f for f in fields(target)}
    for key, value in overrides.items():
        if key not in known:
            logger.warning(f"Ignoring unknown configuration key: {path}{key}")
            continue
        current = getattr(target, key)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ValueError(f"Configuration key {path}{key} must be a JSON object")
            _apply_overrides(current, value, f"{path}{key}.")
        elif key == "identity_rules":
            setattr(target, key, [tuple(rule) for rule in value])
        else:
            setattr(target, key, value)


def load_config(path: Optional[Path] = None) -> RendererConfig:
    """
    Builds the renderer configuration, overlaying a JSON file when given.

    Nested objects in the file map onto the dataclass groups, e.g.
    ``{"features": {"render_markdown_images": false}, "debug": true}``.
    """
    config = RendererConfig()
    if path is None:
        return config

    with open(path, "r", encoding="utf-8") as f:
        overrides = json.load(f)
    if not isinstance(overrides, dict):
        raise ValueError(f"Configuration file {path} must contain a JSON object")
    _apply_overrides(config, overrides)
    logger.info(f"Loaded configuration overrides from: {path}")
    return config
