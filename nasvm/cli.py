"""Interactive menu."""

import argparse
import logging
import os
import shlex
import sys
from typing import List, Optional

from . import console
from .config_manager import ConfigManager, LabConfig
from .dependency_check import check_dependencies
from .disk_manager import DiskLifecycleManager
from .errors import InvalidSlot, LabError, MissingDependency
from .launcher import EmulatorLauncher
from .logging import init_logging
from .media import MediaDownloader
from .models import Representation, RepairMode, SlotState
from .status import StatusReport, build_status
from .system_executor import SystemCommandExecutor

logger = logging.getLogger(__name__)

MENU_LINES = [
    "1. Download ISO",
    "2. Create disks",
    "3. Install OMV (boot from ISO)",
    "4. Start VM",
    "5. Status",
    "6. Reset (delete disks)",
    None,
    "7. Simulate disk failure",
    "8. Replace failed disk",
    None,
    "9. Exit",
]


class MenuApp:
    """Wires the components together and runs the numbered menu."""

    def __init__(self, config: LabConfig, print_only: bool = False,
                 executor: Optional[SystemCommandExecutor] = None):
        self.config = config
        self.print_only = print_only
        self.executor = executor or SystemCommandExecutor.from_config(config)
        self.disks = DiskLifecycleManager(config, self.executor, confirm=console.confirm)
        self.launcher = EmulatorLauncher(config, self.disks, self.executor)
        self.downloader = MediaDownloader(config, confirm=console.confirm)
        self.actions = {
            '1': self.download_media,
            '2': self.create_disks,
            '3': self.install,
            '4': self.start_vm,
            '5': self.show_status,
            '6': self.reset,
            '7': self.simulate_failure,
            '8': self.replace_failed,
        }

    def run(self) -> int:
        while True:
            self.show_menu()
            choice = console.ask("Select an option [1-9]: ")

            if choice is None or choice == '9':
                console.print_info("Goodbye!")
                return 0

            action = self.actions.get(choice)
            if action is None:
                console.print_error("Invalid option")
            else:
                self.run_action(action)

            console.ask("Press ENTER to continue...")

    def run_action(self, action) -> bool:
        """Run one menu action; errors end the action, not the session."""
        try:
            action()
            return True
        except LabError as e:
            logger.error(f"{action.__name__} failed: {e}")
            console.print_error(str(e))
            return False
        except OSError as e:
            logger.error(f"{action.__name__} failed: {e}")
            console.print_error(f"File operation failed: {e}")
            return False

    def show_menu(self) -> None:
        border = "═" * 40
        console.echo()
        console.print_bold(f"╔{border}╗")
        console.print_bold(f"║   {'OpenMediaVault QEMU Manager':<37}║")
        console.print_bold(f"╠{border}╣")
        for line in MENU_LINES:
            if line is None:
                console.print_bold(f"╠{border}╣")
            else:
                console.echo(f"{console.BOLD}║{console.NC}  {line:<38}{console.BOLD}║{console.NC}")
        console.print_bold(f"╚{border}╝")
        console.echo()

    # Actions

    def download_media(self) -> None:
        console.print_header("Download OpenMediaVault ISO")
        console.print_info(f"Downloading from: {self.config.iso_url}")
        console.print_info(f"Destination: {self.config.iso_file}")

        if not self.downloader.download(progress=_print_progress):
            console.print_info("Existing ISO kept")
            return

        console.echo()
        size = console.format_bytes(self._media_size())
        console.print_success(f"Download complete! ({size})")

    def _media_size(self) -> Optional[int]:
        path = self.config.iso_file
        return os.path.getsize(path) if os.path.isfile(path) else None

    def create_disks(self) -> None:
        console.print_header("Creating Virtual Disks")
        created = self.disks.create_all()
        for name in created:
            console.print_success(f"Created {name}")
        for inspection in self.disks.inspect_all():
            if inspection.state != SlotState.HEALTHY:
                console.print_warning(
                    f"Disk {inspection.name} is {inspection.state.label}, skipped"
                )
        console.echo()
        console.print_success("All disks are ready!")

    def install(self) -> None:
        console.print_header("OpenMediaVault Installation")
        command = self.launcher.prepare(install=True)

        console.print_info("Starting VM in installation mode, booting from CD-ROM")
        console.print_warning("During installation:")
        console.echo("  - Select /dev/vda as destination disk")
        console.echo("  - The other virtio disks are for storage")
        self._print_ports()
        self._start(command)

    def start_vm(self) -> None:
        console.print_header("Starting OpenMediaVault")
        command = self.launcher.prepare(install=False)

        config = self.config
        console.print_info("Access after boot:")
        console.echo(f"  - SSH:         ssh -p {config.ssh_port} root@localhost")
        console.echo(f"  - Web:         http://localhost:{config.web_port}")
        console.echo("                 (user: admin, password: openmediavault)")
        console.echo(f"  - Samba:       smbclient -p {config.samba_port} -L localhost -U admin")
        console.echo(f"  - FileBrowser: http://localhost:{config.filebrowser_port}")
        self._start(command)

    def show_status(self) -> None:
        console.print_header("System Status")
        render_status(build_status(self.config, self.disks, self.executor))

    def reset(self) -> None:
        console.print_header("System Reset")
        console.print_warning("This operation will delete ALL virtual disks!")
        console.print_warning("OpenMediaVault installation will be lost.")

        if not self.disks.reset_all():
            console.print_info("Operation cancelled")
            return

        console.print_success("Reset complete!")
        console.print_info("Use option 2 to recreate disks")

    def simulate_failure(self) -> None:
        console.print_header("Simulate Disk Failure")
        console.print_warning("This simulates a disk failure for educational purposes.")
        console.print_info("The original disk is backed up and replaced with an empty one")
        console.echo()

        console.print_bold("Storage disks:")
        healthy = []
        for inspection in self.disks.inspect_all():
            console.echo(f"  {inspection.index}. {inspection.name} [{inspection.state.label}]")
            if inspection.state == SlotState.HEALTHY:
                healthy.append(inspection.index)

        if not healthy:
            console.print_error("No disk available to mark as failed")
            return

        index = self._ask_slot("Select disk to 'fail' [1-{n}] (0 to cancel): ")
        if index is None:
            console.print_info("Operation cancelled")
            return

        if not self.disks.mark_failed(index):
            console.print_info("Operation cancelled")
            return

        inspection = self.disks.inspect(index)
        console.print_success(f"Disk storage{index} marked as failed!")
        console.print_info(f"Original disk backed up to: {os.path.basename(inspection.paths.backup)}")
        console.print_info(f"Empty disk created: {os.path.basename(inspection.paths.failed)}")
        console.print_info("Next steps:")
        console.echo("  1. Start VM (option 4) - RAID will be in degraded state")
        console.echo("  2. In OMV you will see the RAID degraded with a missing disk")
        console.echo("  3. Use option 8 to 'replace' the failed disk")

    def replace_failed(self) -> None:
        console.print_header("Replace Failed Disk")

        failed = [i for i in self.disks.inspect_all() if i.state == SlotState.FAILED]
        if not failed:
            console.print_info("No failed disk found")
            return

        console.print_bold("Failed disks:")
        for inspection in failed:
            console.echo(f"  {inspection.index}. {inspection.name} - original backed up "
                         f"({console.format_bytes(inspection.size_of(Representation.BACKUP))})")
        console.echo()
        console.print_bold("Options:")
        console.echo("  1. Restore original disk (simulate repair - data preserved)")
        console.echo("  2. Create new empty disk (simulate replacement - rebuild RAID)")
        console.echo("  0. Cancel")

        option = console.ask("Select option: ")
        if option == '0':
            console.print_info("Operation cancelled")
            return
        if option not in ('1', '2'):
            console.print_error("Invalid option")
            return
        mode = RepairMode.RESTORE if option == '1' else RepairMode.REPLACE

        index = self._ask_slot("Select disk to restore/replace [1-{n}]: ")
        if index is None:
            console.print_info("Operation cancelled")
            return

        if mode == RepairMode.REPLACE:
            console.print_warning(
                f"storage{index}.{self.config.image_format}.backup is the last copy of the original data"
            )

        if not self.disks.repair(index, mode):
            console.print_info("Operation cancelled")
            return

        if mode == RepairMode.RESTORE:
            console.print_success(f"Disk storage{index} restored with original data!")
            console.print_info("RAID should automatically resync on next boot")
        else:
            console.print_success(f"New disk storage{index} created!")
            console.print_info("The new disk is empty and must be added to RAID in OMV")
        console.print_info("Next steps:")
        console.echo("  1. Start VM (option 4)")
        console.echo("  2. In OMV, go to Storage -> RAID Management")
        console.echo("  3. The RAID should rebuild automatically or add the disk manually")

    # Helpers

    def _ask_slot(self, prompt: str) -> Optional[int]:
        """Read a slot number; None means cancel."""
        answer = console.ask(prompt.format(n=self.config.storage_disk_count))
        if not answer or answer == '0':
            return None
        try:
            index = int(answer)
        except ValueError:
            raise InvalidSlot(answer, self.config.storage_disk_count) from None
        if index not in self.config.slot_indices:
            raise InvalidSlot(index, self.config.storage_disk_count)
        return index

    def _print_ports(self) -> None:
        config = self.config
        console.print_info("Port forwarding configured:")
        console.echo(f"  - SSH:         localhost:{config.ssh_port} -> VM:22")
        console.echo(f"  - Web:         localhost:{config.web_port} -> VM:80")
        console.echo(f"  - Samba:       localhost:{config.samba_port} -> VM:445")
        console.echo(f"  - FileBrowser: localhost:{config.filebrowser_port} -> VM:3670")

    def _start(self, command: List[str]) -> None:
        console.echo()
        console.print_info("QEMU command:")
        console.echo(f"  {' '.join(shlex.quote(arg) for arg in command)}")
        console.echo()

        if self.print_only:
            return
        if not console.confirm("Start VM?", default=True):
            return

        exit_code = self.launcher.launch(command)
        if exit_code != 0:
            console.print_error(f"QEMU exited with code {exit_code}")


def render_status(report: StatusReport) -> None:
    """Print a StatusReport."""
    config = report.config

    console.print_bold("ISO:")
    if report.media_present:
        console.print_success(f"{config.iso_filename} ({console.format_bytes(report.media_size)})")
    else:
        console.print_warning("ISO not present")
    console.echo()

    console.print_bold("Virtual disks:")
    if not report.disks_dir_exists:
        console.print_warning("Disks directory does not exist")
    else:
        if report.system_disk is not None:
            console.print_success(_image_line(report.system_disk))
        else:
            console.print_warning(f"system.{config.image_format}: not created")

        for slot in report.slots:
            if slot.state == SlotState.HEALTHY:
                console.print_success(_image_line(report.images[slot.paths.live]))
            elif slot.state == SlotState.FAILED:
                console.print_error(
                    f"{os.path.basename(slot.paths.live)}: FAILED (simulated, backup available)"
                )
            elif slot.state == SlotState.INCONSISTENT:
                console.print_error(
                    f"{os.path.basename(slot.paths.live)}: INCONSISTENT (files: {', '.join(slot.present)})"
                )
            else:
                console.print_warning(f"{os.path.basename(slot.paths.live)}: not created")

        if not report.any_disk:
            console.print_warning("No disks created")
        if report.free_bytes is not None:
            console.print_info(f"Free space in disks directory: {console.format_bytes(report.free_bytes)}")
    console.echo()

    console.print_bold("VM Configuration:")
    console.echo(f"  RAM:              {config.ram}")
    console.echo(f"  CPU:              {config.cpus} cores")
    console.echo(f"  Storage disks:    {config.storage_disk_count} x {config.storage_disk_size}")
    console.echo(f"  SSH port:         {config.ssh_port}")
    console.echo(f"  Web port:         {config.web_port}")
    console.echo(f"  Samba port:       {config.samba_port}")
    console.echo(f"  FileBrowser port: {config.filebrowser_port}")
    console.echo()

    console.print_bold("KVM:")
    if report.kvm:
        console.print_success("Available")
    else:
        console.print_warning("Not available (VM will be slow)")


def _image_line(info) -> str:
    return (f"{info.name}: virtual size {console.format_bytes(info.virtual_size)}, "
            f"disk size {console.format_bytes(info.actual_size)}")


def _print_progress(done: int, total: Optional[int]) -> None:
    if total:
        text = f"\r  {console.format_bytes(done)} / {console.format_bytes(total)} ({done * 100 // total}%)"
    else:
        text = f"\r  {console.format_bytes(done)}"
    sys.stdout.write(text)
    sys.stdout.flush()


def create_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nasvm",
        description="QEMU sandbox for learning NAS/RAID administration with OpenMediaVault",
    )
    parser.add_argument("--config", metavar="PATH",
                        help="JSON or .env style configuration file")
    parser.add_argument("--print-only", action="store_true",
                        help="show the QEMU command instead of starting the VM")
    return parser


def check_host(config: LabConfig) -> bool:
    """Print the dependency check; False if a required binary is missing."""
    console.print_header("Checking Dependencies")
    report = check_dependencies(config)

    for binary in report.found:
        console.print_success(f"{binary} found")
    if report.kvm:
        console.print_success("KVM available (/dev/kvm exists)")
        if report.kvm_group:
            console.print_success("User in 'kvm' group")
    for warning in report.warnings:
        console.print_warning(warning)

    if not report.ok:
        console.echo()
        console.print_error(str(MissingDependency(report.missing)))
        console.print_info("Install with:")
        console.echo("  sudo apt install qemu-system-x86 qemu-utils")
        return False

    console.echo()
    console.print_success("All dependencies satisfied!")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    args = create_arg_parser().parse_args(argv)

    try:
        config = ConfigManager(args.config).load_config()
    except ValueError as e:
        console.print_error(f"Invalid configuration: {e}")
        return 2

    init_logging(config)

    if not check_host(config):
        return 1

    try:
        return MenuApp(config, print_only=args.print_only).run()
    except KeyboardInterrupt:
        console.echo()
        console.print_info("Goodbye!")
        return 130


if __name__ == "__main__":
    sys.exit(main())
