"""
FSEvents flag registry.

Both tables are plain module-level tuples built at import time and never
mutated, so they can be read from any thread without locking.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Tuple

from .exceptions import UnknownFlagError

FLAG_SEP = " | "

FLAGS: Tuple[Tuple[str, int], ...] = (
    ("FolderEvent", 0x0000_0001),
    ("Mount", 0x0000_0002),
    ("Unmount", 0x0000_0004),
    ("EndOfTransaction", 0x0000_0020),
    ("LastHardLinkRemoved", 0x0000_0800),
    ("HardLink", 0x0000_1000),
    ("SymbolicLink", 0x0000_4000),
    ("FileEvent", 0x0000_8000),
    ("PermissionChange", 0x0001_0000),
    ("ExtendedAttrModified", 0x0002_0000),
    ("ExtendedAttrRemoved", 0x0004_0000),
    ("DocumentRevisioning", 0x0010_0000),
    ("ItemCloned", 0x0040_0000),
    ("Created", 0x0100_0000),
    ("Removed", 0x0200_0000),
    ("InodeMetaMod", 0x0400_0000),
    ("Renamed", 0x0800_0000),
    ("Modified", 0x1000_0000),
    ("Exchange", 0x2000_0000),
    ("FinderInfoMod", 0x4000_0000),
    ("FolderCreated", 0x8000_0000),
)

# Same bits read with the opposite byte order.
ALT_FLAGS: Tuple[Tuple[str, int], ...] = (
    ("Created", 0x0000_0001),
    ("Removed", 0x0000_0002),
    ("InodeMetaMod", 0x0000_0004),
    ("RenamedOrMoved", 0x0000_0008),
    ("Modified", 0x0000_0010),
    ("Exchange", 0x0000_0020),
    ("FinderInfoMod", 0x0000_0040),
    ("FolderCreated", 0x0000_0080),
    ("PermissionChange", 0x0000_0100),
    ("XAttrModified", 0x0000_0200),
    ("XAttrRemoved", 0x0000_0400),
    ("0x00000800", 0x0000_0800),
    ("DocumentRevision", 0x0000_1000),
    ("ItemCloned", 0x0000_4000),
    ("LastHardLinkRemoved", 0x0008_0000),
    ("HardLink", 0x0010_0000),
    ("SymbolicLink", 0x0040_0000),
    ("FileEvent", 0x0080_0000),
    ("FolderEvent", 0x0100_0000),
    ("Mount", 0x0200_0000),
    ("Unmount", 0x0400_0000),
    ("EndOfTransaction", 0x2000_0000),
)

MASK_32 = 0xFFFF_FFFF


@dataclass(frozen=True)
class FlagSet:
    """
    Decoded view of a 32-bit flag mask.

    Attributes:
        mask: The original mask, unknown bits included
        names: Names of the set bits, in table order
        unknown_bits: Bits of the mask that no table entry names
    """
    mask: int
    names: Tuple[str, ...]
    unknown_bits: int = 0

    def __contains__(self, name: object) -> bool:
        if not isinstance(name, str):
            return False
        wanted = name.lower()
        return any(n.lower() == wanted for n in self.names)

    def __iter__(self):
        return iter(self.names)

    def __len__(self) -> int:
        return len(self.names)

    def __str__(self) -> str:
        return FLAG_SEP.join(self.names)


def _table(alt: bool) -> Tuple[Tuple[str, int], ...]:
    return ALT_FLAGS if alt else FLAGS


@lru_cache(maxsize=4096)
def decode(mask: int, alt: bool = False) -> FlagSet:
    """
    Decode a flag mask into its named bits.

    Args:
        mask: 32-bit flag mask
        alt: Use the alternate (byte-swapped) name table

    Returns:
        FlagSet with names in table order
    """
    mask &= MASK_32
    names = []
    known = 0
    for name, bit in _table(alt):
        known |= bit
        if mask & bit:
            names.append(name)
    return FlagSet(mask=mask, names=tuple(names), unknown_bits=mask & ~known & MASK_32)


def flag_value(name: str, alt: bool = False) -> int:
    """Single-bit mask for a flag name, matched case-insensitively."""
    wanted = name.strip().lower()
    for flag_name, bit in _table(alt):
        if flag_name.lower() == wanted:
            return bit
    raise UnknownFlagError(name)


def name_to_bit(name: str, alt: bool = False) -> int:
    """Bit position (0-31) of a flag name, matched case-insensitively."""
    return flag_value(name, alt).bit_length() - 1


def flags_to_mask(names: Iterable[str], alt: bool = False) -> int:
    """OR together the masks of several flag names."""
    mask = 0
    for name in names:
        mask |= flag_value(name, alt)
    return mask


def flag_names(alt: bool = False) -> List[str]:
    """All flag names in table order."""
    return [name for name, _ in _table(alt)]


def format_flags(mask: int, alt: bool = False) -> str:
    """Names of the set bits joined with `` | ``."""
    return str(decode(mask, alt))
