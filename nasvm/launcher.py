"""Build the QEMU command line from the current disk states and run it."""

import logging
import os
from typing import Iterable, List, Optional

from .config_manager import LabConfig
from .disk_manager import DiskLifecycleManager
from .errors import InconsistentSlot, MissingDependency, NotFound, SlotUnavailable
from .models import DriveAttachment, SlotInspection, SlotState
from .system_executor import SystemCommandExecutor

logger = logging.getLogger(__name__)

KVM_DEVICE = '/dev/kvm'


def kvm_available() -> bool:
    return os.path.exists(KVM_DEVICE)


def slot_serial(index: int) -> str:
    """Serial shown to the guest for a slot, same whether healthy or failed."""
    return f"STORAGE{index}"


def escape_drive_value(value: str) -> str:
    """QEMU option values use ',,' for a literal comma."""
    return value.replace(',', ',,')


class EmulatorLauncher:
    """Turns slot inspections into emulator arguments and starts the VM."""

    def __init__(self,
                 config: LabConfig,
                 disk_manager: DiskLifecycleManager,
                 executor: SystemCommandExecutor):
        self.config = config
        self.disk_manager = disk_manager
        self.executor = executor

    def build_storage_attachments(self, inspections: Iterable[SlotInspection]) -> List[DriveAttachment]:
        """
        Map slot inspections to drive attachments, in slot order.

        Healthy slots attach their image and failed slots their empty
        placeholder, both under the slot's serial so the guest keeps the same
        device order. Absent slots are skipped.

        Raises:
            SlotUnavailable: An image the state calls for is missing
            InconsistentSlot: A slot matches no known state
        """
        attachments = []
        for inspection in sorted(inspections, key=lambda item: item.index):
            index = inspection.index
            state = inspection.state

            if state == SlotState.ABSENT:
                continue

            if state == SlotState.INCONSISTENT:
                raise InconsistentSlot(index, state, inspection.present)

            if state == SlotState.HEALTHY:
                path = inspection.paths.live
                placeholder = False
            else:
                path = inspection.paths.failed
                placeholder = True

            if not os.path.isfile(path):
                raise SlotUnavailable(
                    index, state,
                    message=(
                        f"storage{index} is {state.label} but {os.path.basename(path)} is missing; "
                        "launch aborted to keep device order"
                    )
                )

            if placeholder:
                logger.warning(f"Disk storage{index} marked as failed - using empty disk",
                               extra={'slot': index, 'state': state})

            attachments.append(DriveAttachment(
                index=index,
                path=path,
                serial=slot_serial(index),
                placeholder=placeholder,
            ))

        return attachments

    def build_command(self,
                      attachments: List[DriveAttachment],
                      with_media: bool = False,
                      boot_from_media: bool = False,
                      kvm: Optional[bool] = None) -> List[str]:
        """
        Build the emulator argument list.

        Args:
            attachments: Storage drives in slot order
            with_media: Attach the install media as a CD-ROM
            boot_from_media: Boot from the CD-ROM (only with with_media)
            kvm: Force KVM on or off, autodetected when None

        Returns:
            Full command, starting with the emulator binary
        """
        config = self.config
        cmd = [config.emulator_binary]

        if kvm is None:
            kvm = kvm_available()
        if kvm:
            cmd.append('-enable-kvm')

        cmd.extend(['-m', config.ram, '-smp', str(config.cpus)])

        cmd.extend([
            '-drive',
            f"file={escape_drive_value(config.system_disk)},format={config.image_format},if=virtio",
        ])

        for drive in attachments:
            cmd.extend([
                '-drive',
                f"file={escape_drive_value(drive.path)},format={config.image_format},"
                f"if=none,id={drive.drive_id},serial={drive.serial}",
                '-device',
                f"virtio-blk-pci,drive={drive.drive_id},serial={drive.serial}",
            ])

        if with_media:
            cmd.extend(['-cdrom', config.iso_file])
            if boot_from_media:
                cmd.extend(['-boot', 'd'])

        forwards = ','.join(
            f"hostfwd=tcp::{host}-:{guest}" for host, guest in config.port_forwards.items()
        )
        cmd.extend([
            '-netdev', f"user,id=net0,{forwards}",
            '-device', 'virtio-net-pci,netdev=net0',
            '-display', config.display,
        ])

        return cmd

    def prepare(self, install: bool = False) -> List[str]:
        """
        Check the required files and build the command for the current disks.

        Args:
            install: Attach the install media and boot from it

        Raises:
            NotFound: System disk or install media missing
        """
        if install and not os.path.isfile(self.config.iso_file):
            raise NotFound("Install media", self.config.iso_file)

        if not self.disk_manager.system_disk_exists():
            raise NotFound("System disk", self.config.system_disk)

        attachments = self.build_storage_attachments(self.disk_manager.inspect_all())
        return self.build_command(attachments, with_media=install, boot_from_media=install)

    def launch(self, command: List[str]) -> int:
        """Run the emulator and wait for it to exit."""
        try:
            return self.executor.execute_emulator(command)
        except FileNotFoundError:
            raise MissingDependency([command[0]])
