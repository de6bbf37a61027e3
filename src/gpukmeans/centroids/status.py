"""
Per-group look-back state shared by the Triton kernel and the CPU model.

Flag word: epoch * STATUS_STRIDE + status. Values written during an earlier
dispatch decode as NOT_READY for the current epoch.

Slot layout per group (float32, SLOTS_PER_GROUP wide):
  [PREFIX_SLOT : PREFIX_SLOT + 4]       inclusive prefix (r, g, b, count)
  [AGGREGATE_SLOT : AGGREGATE_SLOT + 4] local aggregate  (r, g, b, count)
"""
from __future__ import annotations

NOT_READY = 0
AGGREGATE_READY = 1
PREFIX_READY = 2

STATUS_STRIDE = 4

PREFIX_SLOT = 0
AGGREGATE_SLOT = 4
SLOTS_PER_GROUP = 8

# Largest epoch whose flag word still fits in int32
MAX_EPOCH = (2**31 - 1) // STATUS_STRIDE - 1


def encode_flag(epoch: int, status: int) -> int:
    return int(epoch) * STATUS_STRIDE + int(status)


def decode_flag(word: int, epoch: int) -> int:
    base = int(epoch) * STATUS_STRIDE
    if int(word) < base:
        return NOT_READY
    return int(word) - base
