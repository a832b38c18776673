"""Host checks run before the menu starts."""

import grp
import logging
import os
import shutil
from dataclasses import dataclass, field
from typing import List

import psutil

from .config_manager import LabConfig, parse_size
from .launcher import kvm_available

logger = logging.getLogger(__name__)


@dataclass
class DependencyReport:
    """Outcome of the host checks."""
    found: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    kvm: bool = False
    kvm_group: bool = False

    @property
    def ok(self) -> bool:
        return not self.missing


def in_kvm_group() -> bool:
    """True if the current process carries the kvm group."""
    try:
        kvm_gid = grp.getgrnam('kvm').gr_gid
    except KeyError:
        return False
    return kvm_gid in os.getgroups() or os.getgid() == kvm_gid


def check_dependencies(config: LabConfig) -> DependencyReport:
    """
    Look for the QEMU binaries, KVM access and enough host memory.

    Returns:
        DependencyReport; ``missing`` lists binaries not found on PATH
    """
    report = DependencyReport()

    for binary in (config.emulator_binary, config.image_binary):
        if shutil.which(binary):
            report.found.append(binary)
        else:
            report.missing.append(binary)

    report.kvm = kvm_available()
    if report.kvm:
        report.kvm_group = in_kvm_group()
        if not report.kvm_group:
            report.warnings.append(
                "User NOT in 'kvm' group - VM may be slow "
                "(run: sudo usermod -aG kvm $USER && logout)"
            )
    else:
        report.warnings.append(
            "KVM not available - VM will be very slow (check that virtualization is enabled in BIOS)"
        )

    wanted = parse_size(config.ram)
    total = psutil.virtual_memory().total
    if wanted >= total:
        report.warnings.append(
            f"Configured RAM {config.ram} is not below host memory ({total // 1024 ** 2} MiB)"
        )

    for message in report.warnings:
        logger.warning(message)
    if report.missing:
        logger.error(f"Missing dependencies: {', '.join(report.missing)}")

    return report

