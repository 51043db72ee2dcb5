"""
Renders conversation images inline in a conversation log viewer.
"""
from .config import RendererConfig, load_config
from .engine import RenderEngine, attach
from .models import CooldownError, FileResolutionError, ImageCandidate, MessageRecord, RendererError

__version__ = "0.1.8"

__all__ = [
    "CooldownError",
    "FileResolutionError",
    "ImageCandidate",
    "MessageRecord",
    "RenderEngine",
    "RendererConfig",
    "RendererError",
    "attach",
    "load_config",
]
