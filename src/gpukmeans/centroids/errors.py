from __future__ import annotations


class LookbackLivelockError(RuntimeError):
    """A group waited on a predecessor flag that never left NOT_READY."""
