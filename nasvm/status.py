"""Status report of media, disks and host."""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import psutil

from .config_manager import LabConfig
from .disk_manager import DiskLifecycleManager
from .launcher import kvm_available
from .models import SlotInspection
from .system_executor import SystemCommandExecutor

logger = logging.getLogger(__name__)


@dataclass
class ImageInfo:
    """Sizes reported by qemu-img for one image file."""
    path: str
    virtual_size: Optional[int] = None
    actual_size: Optional[int] = None

    @property
    def name(self) -> str:
        return os.path.basename(self.path)


@dataclass
class StatusReport:
    """Everything the status screen shows."""
    config: LabConfig
    media_size: Optional[int]
    system_disk: Optional[ImageInfo]
    slots: List[SlotInspection]
    images: Dict[str, ImageInfo] = field(default_factory=dict)
    disks_dir_exists: bool = False
    free_bytes: Optional[int] = None
    kvm: bool = False

    @property
    def media_present(self) -> bool:
        return self.media_size is not None

    @property
    def any_disk(self) -> bool:
        return self.system_disk is not None or any(slot.sizes for slot in self.slots)


def read_image_info(executor: SystemCommandExecutor, path: str) -> ImageInfo:
    """
    Ask qemu-img for the virtual and allocated size of an image.

    Sizes stay None when qemu-img fails or prints something unexpected.
    """
    info = ImageInfo(path=path)
    success, stdout, stderr = executor.execute_image_info(path)
    if not success:
        logger.warning(f"qemu-img info failed for {path}: {stderr.strip()}")
        return info

    try:
        data = json.loads(stdout)
    except json.JSONDecodeError:
        logger.warning(f"Unexpected qemu-img info output for {path}")
        return info

    info.virtual_size = data.get('virtual-size')
    info.actual_size = data.get('actual-size')
    return info


def build_status(config: LabConfig,
                 disk_manager: DiskLifecycleManager,
                 executor: SystemCommandExecutor) -> StatusReport:
    """Collect the status report. Read only."""
    media_size = os.path.getsize(config.iso_file) if os.path.isfile(config.iso_file) else None

    system_disk = None
    if disk_manager.system_disk_exists():
        system_disk = read_image_info(executor, config.system_disk)

    slots = disk_manager.inspect_all()
    images = {}
    for slot in slots:
        for rep in slot.sizes:
            path = slot.paths.path_for(rep)
            images[path] = read_image_info(executor, path)

    disks_dir_exists = os.path.isdir(config.disks_dir)
    usage_path = config.disks_dir if disks_dir_exists else config.base_dir
    try:
        free_bytes = psutil.disk_usage(usage_path).free
    except OSError as e:
        logger.warning(f"Could not read free space of {usage_path}: {e}")
        free_bytes = None

    return StatusReport(
        config=config,
        media_size=media_size,
        system_disk=system_disk,
        slots=slots,
        images=images,
        disks_dir_exists=disks_dir_exists,
        free_bytes=free_bytes,
        kvm=kvm_available(),
    )
