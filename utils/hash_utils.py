from typing import Sequence

PALETTE = ("red", "green", "blue", "yellow", "purple", "pink", "indigo")


def _to_int32(n: int) -> int:
    n &= 0xFFFFFFFF
    return n - 0x100000000 if n & 0x80000000 else n


def string_hash(text: str) -> int:
    # acc = code + ((acc << 5) - acc); the shift wraps to a signed 32-bit int
    acc = 0
    for ch in text or "":
        acc = ord(ch) + (_to_int32(_to_int32(acc) << 5) - acc)
    return acc


def tag_color(tag: str, palette: Sequence[str] = PALETTE) -> str:
    """Same tag, same color. Different tags may share one."""
    if not palette:
        raise ValueError("palette must not be empty")
    return palette[abs(string_hash(tag)) % len(palette)]
