"""Virtual disk lifecycle: create, fail, repair and reset storage images.

A slot's state is never stored. It is derived on every call from which of
``storageN.<ext>``, ``storageN.<ext>.backup`` and ``storageN.<ext>.failed``
exist, so an interrupted run is always reported as it is on disk.
"""

import glob
import logging
import os
from typing import Callable, List, Optional

from .config_manager import LabConfig
from .errors import (
    AlreadyExists, ImageCommandError, InconsistentSlot, InvalidSlot, InvalidState
)
from .models import (
    RepairMode, Representation, SlotInspection, SlotPaths, SlotState, derive_slot_state
)
from .system_executor import SystemCommandExecutor

logger = logging.getLogger(__name__)

ConfirmFn = Callable[[str], bool]


def deny(prompt: str) -> bool:
    """Confirmation capability that refuses every destructive action."""
    return False


class DiskLifecycleManager:
    """Owns the system disk and the storage slots 1..N."""

    def __init__(self,
                 config: LabConfig,
                 executor: SystemCommandExecutor,
                 confirm: ConfirmFn = deny):
        """
        Args:
            config: Sandbox configuration
            executor: Runs qemu-img to materialize images
            confirm: Asked before any destructive step, returns True to proceed
        """
        self.config = config
        self.executor = executor
        self.confirm = confirm

    # Inspection

    def slot_paths(self, index: int) -> SlotPaths:
        if not isinstance(index, int) or isinstance(index, bool) or index not in self.config.slot_indices:
            raise InvalidSlot(index, self.config.storage_disk_count)
        return self.config.slot_paths(index)

    def inspect(self, index: int) -> SlotInspection:
        """
        Derive the state of a slot from the files present. Never mutates.

        Args:
            index: Slot index (1..N)

        Returns:
            SlotInspection with the state and the size of every present file
        """
        paths = self.slot_paths(index)
        sizes = {}
        for rep in Representation:
            path = paths.path_for(rep)
            if os.path.isfile(path):
                sizes[rep] = os.path.getsize(path)

        state = derive_slot_state(
            Representation.LIVE in sizes,
            Representation.BACKUP in sizes,
            Representation.FAILED in sizes,
        )
        return SlotInspection(index=index, state=state, paths=paths, sizes=sizes)

    def inspect_all(self) -> List[SlotInspection]:
        return [self.inspect(index) for index in self.config.slot_indices]

    def system_disk_exists(self) -> bool:
        return os.path.isfile(self.config.system_disk)

    # Transitions

    def create_slot(self, index: int, capacity: Optional[str] = None) -> SlotInspection:
        """
        Create a fresh empty image for a slot.

        If the slot has any file, the operator must confirm the overwrite; every
        representation is then deleted first. Nothing is backed up.

        Args:
            index: Slot index
            capacity: Virtual size, defaults to the configured storage size

        Returns:
            Inspection of the now healthy slot

        Raises:
            AlreadyExists: The slot has files and overwrite was declined
        """
        inspection = self.inspect(index)
        capacity = capacity or self.config.storage_disk_size

        if inspection.state != SlotState.ABSENT:
            prompt = (
                f"storage{index} already exists ({inspection.state.label}). "
                "Overwrite it? (ALL DATA WILL BE LOST)"
            )
            if not self.confirm(prompt):
                raise AlreadyExists(index, inspection.state, SlotState.ABSENT)
            self._remove_representations(inspection.paths)

        os.makedirs(self.config.disks_dir, exist_ok=True)
        self._materialize(inspection.paths.live, capacity)
        logger.info(f"Created storage{index} ({capacity})",
                    extra={'slot': index, 'state': SlotState.HEALTHY})
        return self.inspect(index)

    def create_system_disk(self) -> bool:
        """
        Create the system disk, asking before recreating an existing one.

        Returns:
            True if an image was written, False if the existing disk was kept
        """
        path = self.config.system_disk
        if os.path.isfile(path):
            if not self.confirm("System disk already exists. Recreate it? (ALL DATA WILL BE LOST)"):
                logger.info("System disk kept")
                return False
            self._remove(path)

        os.makedirs(self.config.disks_dir, exist_ok=True)
        self._materialize(path, self.config.system_disk_size)
        logger.info(f"Created system disk ({self.config.system_disk_size})", extra={'path': path})
        return True

    def create_all(self) -> List[str]:
        """
        Create the system disk and every absent storage slot.

        Slots that already have files are skipped, never overwritten.

        Returns:
            Names of the images that were created
        """
        os.makedirs(self.config.disks_dir, exist_ok=True)
        created = []

        if self.create_system_disk():
            created.append(os.path.basename(self.config.system_disk))

        for index in self.config.slot_indices:
            inspection = self.inspect(index)
            if inspection.state != SlotState.ABSENT:
                logger.warning(f"storage{index} already exists ({inspection.state.label}), skipped",
                               extra={'slot': index, 'state': inspection.state})
                continue
            self.create_slot(index)
            created.append(os.path.basename(inspection.paths.live))

        return created

    def mark_failed(self, index: int) -> bool:
        """
        Simulate a disk failure.

        The live image is kept as ``.backup`` and an empty ``.failed`` image of
        the configured storage size stands in for it.

        Returns:
            True if the slot is now failed, False if the operator cancelled

        Raises:
            InvalidState: The slot is not healthy
            InconsistentSlot: The slot files match no known state
        """
        inspection = self.inspect(index)
        self._require_state(inspection, SlotState.HEALTHY)

        if not self.confirm(f"Confirm you want to simulate failure of storage{index}?"):
            return False

        paths = inspection.paths
        os.rename(paths.live, paths.backup)
        try:
            self._materialize(paths.failed, self.config.storage_disk_size)
        except (ImageCommandError, OSError):
            # Put the original back so the slot stays healthy
            self._remove(paths.failed)
            os.rename(paths.backup, paths.live)
            logger.error(f"Could not create placeholder for storage{index}, failure not simulated",
                         extra={'slot': index, 'state': SlotState.HEALTHY})
            raise

        logger.info(f"storage{index} marked as failed",
                    extra={'slot': index, 'state': SlotState.FAILED})
        return True

    def repair(self, index: int, mode: RepairMode) -> bool:
        """
        Bring a failed slot back.

        RESTORE drops the placeholder and puts the original image back.
        REPLACE drops both the placeholder and the original, then creates a new
        empty image; the original data is gone for good.

        Returns:
            True if the slot is healthy again, False if the operator cancelled

        Raises:
            InvalidState: The slot is not failed
            InconsistentSlot: The slot files match no known state
        """
        mode = RepairMode(mode)
        inspection = self.inspect(index)
        self._require_state(inspection, SlotState.FAILED)
        paths = inspection.paths

        if mode == RepairMode.RESTORE:
            self._remove(paths.failed)
            os.rename(paths.backup, paths.live)
            logger.info(f"storage{index} restored with original data",
                        extra={'slot': index, 'state': SlotState.HEALTHY})
            return True

        prompt = (
            f"Replace storage{index} with a new empty disk? "
            f"The backup {os.path.basename(paths.backup)} will be deleted and its data cannot be recovered"
        )
        if not self.confirm(prompt):
            return False

        self._remove(paths.failed)
        self._remove(paths.backup)
        self._materialize(paths.live, self.config.storage_disk_size)
        logger.info(f"storage{index} replaced with a new empty disk",
                    extra={'slot': index, 'state': SlotState.HEALTHY})
        return True

    def reset_all(self) -> bool:
        """
        Delete every disk image: system disk plus live, backup and placeholder
        files of all storage slots.

        Returns:
            True if the images were deleted, False if the operator cancelled
        """
        if not self.confirm("This deletes ALL virtual disks. Are you sure you want to proceed?"):
            return False
        if not self.confirm("Do you DEFINITELY confirm?"):
            return False

        removed = 0
        for path in self._all_image_files():
            self._remove(path)
            removed += 1

        logger.info(f"Reset complete, {removed} image file(s) deleted")
        return True

    # Helpers

    def _require_state(self, inspection: SlotInspection, expected: SlotState) -> None:
        if inspection.state == SlotState.INCONSISTENT:
            raise InconsistentSlot(inspection.index, inspection.state, inspection.present)
        if inspection.state != expected:
            raise InvalidState(inspection.index, inspection.state, expected)

    def _all_image_files(self) -> List[str]:
        """System disk and storage files, including slots beyond the configured count."""
        ext = self.config.image_format
        disks_dir = glob.escape(self.config.disks_dir)
        patterns = [
            f"system.{ext}",
            f"storage*.{ext}",
            f"storage*.{ext}.backup",
            f"storage*.{ext}.failed",
        ]
        files = set()
        for pattern in patterns:
            files.update(glob.glob(os.path.join(disks_dir, pattern)))
        for index in self.config.slot_indices:
            paths = self.config.slot_paths(index)
            files.update(p for p in (paths.live, paths.backup, paths.failed) if os.path.isfile(p))
        return sorted(files)

    def _remove_representations(self, paths: SlotPaths) -> None:
        for rep in Representation:
            self._remove(paths.path_for(rep))

    def _materialize(self, path: str, size: str) -> None:
        success, _, stderr = self.executor.execute_image_create(path, size, self.config.image_format)
        if not success:
            raise ImageCommandError(f"qemu-img create {path} {size}", stderr)

    def _remove(self, path: str) -> None:
        try:
            os.remove(path)
            logger.debug(f"Removed {path}", extra={'path': path})
        except FileNotFoundError:
            pass
