"""
Optional inference backends for detect_kit.

Backends are kept in a separate module so decoding stays importable without an
inference runtime installed. Every backend exposes
`infer(blob) -> Dict[str, np.ndarray]` with outputs in model order.
"""

from __future__ import annotations

__all__ = []
