"""Error types raised by the sandbox components."""

from typing import List, Optional


class LabError(Exception):
    """Base error for operations that abort the current menu action."""
    pass


class MissingDependency(LabError):
    """A required external tool is not installed."""

    def __init__(self, missing: List[str]):
        self.missing = list(missing)
        super().__init__(f"Missing dependencies: {', '.join(self.missing)}")


class NotFound(LabError):
    """A referenced image or install media file does not exist."""

    def __init__(self, what: str, path: str):
        self.what = what
        self.path = path
        super().__init__(f"{what} not found: {path}")


class SlotError(LabError):
    """Error about a specific storage slot and its derived state."""

    def __init__(self, index: int, state, expected=None, message: Optional[str] = None):
        self.index = index
        self.state = state
        self.expected = expected
        if message is None:
            message = f"storage{index} is {_state_name(state)}"
            if expected is not None:
                message += f" (expected {_state_name(expected)})"
        super().__init__(message)


class AlreadyExists(SlotError):
    """The slot already has an image and overwrite was not confirmed."""
    pass


class InvalidState(SlotError):
    """The requested transition is not valid from the slot's current state."""
    pass


class InconsistentSlot(SlotError):
    """The files on disk match none of the canonical slot states."""

    def __init__(self, index: int, state, present: List[str]):
        self.present = list(present)
        super().__init__(
            index, state,
            message=(
                f"storage{index} is inconsistent (files present: {', '.join(self.present)}); "
                "fix the disks directory manually"
            )
        )


class SlotUnavailable(SlotError):
    """An image the launcher needs vanished between inspection and launch."""
    pass


class InvalidSlot(LabError, ValueError):
    """Slot index outside the configured range."""

    def __init__(self, index, count: int):
        self.index = index
        self.count = count
        super().__init__(f"Invalid storage slot {index!r} (valid: 1-{count})")


class DownloadError(LabError):
    """The install media could not be downloaded."""
    pass


class ImageCommandError(LabError):
    """qemu-img returned an error."""

    def __init__(self, command: str, stderr: str):
        self.command = command
        self.stderr = stderr
        super().__init__(f"Command failed: {command}: {stderr.strip() or 'unknown error'}")


def _state_name(state) -> str:
    return getattr(state, "label", str(state))
