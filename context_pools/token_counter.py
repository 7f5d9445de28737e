"""Token counting utilities."""

from __future__ import annotations

import importlib
from typing import Callable


def estimate_tokens(text: str) -> int:
    """Rough estimate: ~4 chars per token, rounded up."""
    return (len(text) + 3) // 4


def create_token_counter(mode: str = "estimate") -> Callable[[str], int]:
    """Factory for token counters.

    Modes:
        "estimate" - ceil(len(text) / 4), no dependencies
        "tiktoken" - cl100k_base encoding, requires the tiktoken extra
        "callable:module.path:func" - any importable ``str -> int`` function
    """
    if mode == "estimate":
        return estimate_tokens

    if mode == "tiktoken":
        try:
            import tiktoken
        except ImportError:
            raise ImportError(
                "tiktoken not installed. Install with: pip install context-pools[tiktoken]"
            )
        enc = tiktoken.get_encoding("cl100k_base")
        return lambda text: len(enc.encode(text))

    if mode.startswith("callable:"):
        parts = mode[len("callable:"):].rsplit(":", 1)
        if len(parts) != 2:
            raise ValueError(f"Invalid callable spec: {mode}. Expected callable:module:func")
        module_path, func_name = parts
        return getattr(importlib.import_module(module_path), func_name)

    raise ValueError(f"Unknown token counter mode: {mode}")
