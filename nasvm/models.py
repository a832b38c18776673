"""Data models for the disk sandbox."""

from dataclasses import dataclass, field
from typing import Dict, Optional
from enum import Enum


class SlotState(Enum):
    """Storage slot state, derived from which image files exist."""
    HEALTHY = "healthy"
    FAILED = "failed"
    ABSENT = "absent"
    INCONSISTENT = "inconsistent"

    @property
    def label(self) -> str:
        return self.value.upper()


class RepairMode(Enum):
    """How a failed slot is brought back."""
    RESTORE = "restore"  # reseat the original disk, data preserved
    REPLACE = "replace"  # new blank disk, original data discarded


class Representation(Enum):
    """Files that can back a storage slot."""
    LIVE = "live"
    BACKUP = "backup"
    FAILED = "failed"


def derive_slot_state(live: bool, backup: bool, failed: bool) -> SlotState:
    """
    Map the presence of a slot's files to its state.

    Args:
        live: storageN.<ext> exists
        backup: storageN.<ext>.backup exists
        failed: storageN.<ext>.failed exists

    Returns:
        The derived SlotState
    """
    if live and backup:
        return SlotState.INCONSISTENT
    if live:
        return SlotState.INCONSISTENT if failed else SlotState.HEALTHY
    if backup:
        return SlotState.FAILED
    if failed:
        return SlotState.INCONSISTENT
    return SlotState.ABSENT


@dataclass(frozen=True)
class SlotPaths:
    """File names used by one storage slot."""
    index: int
    live: str
    backup: str
    failed: str

    def path_for(self, representation: Representation) -> str:
        return getattr(self, representation.value)


@dataclass
class SlotInspection:
    """Result of inspecting a storage slot."""
    index: int
    state: SlotState
    paths: SlotPaths
    sizes: Dict[Representation, int] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return f"storage{self.index}"

    @property
    def present(self) -> list:
        """Names of the representations found on disk."""
        return [rep.value for rep in Representation if rep in self.sizes]

    def size_of(self, representation: Representation) -> Optional[int]:
        return self.sizes.get(representation)


@dataclass(frozen=True)
class DriveAttachment:
    """A storage device handed to the emulator."""
    index: int
    path: str
    serial: str
    placeholder: bool = False

    @property
    def drive_id(self) -> str:
        return f"disk{self.index}"
