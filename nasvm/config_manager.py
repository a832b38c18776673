"""Configuration management for the sandbox."""

import os
import json
import re
import logging
from typing import Dict, Any, Optional
from pathlib import Path
from dataclasses import dataclass, field, fields
from enum import Enum

from dotenv import load_dotenv, dotenv_values

from .models import SlotPaths


logger = logging.getLogger(__name__)

SIZE_PATTERN = re.compile(r'^([1-9][0-9]*)([KMGT]?)$')

SIZE_UNITS = {'': 1, 'K': 1024, 'M': 1024 ** 2, 'G': 1024 ** 3, 'T': 1024 ** 4}

# Guest side of the forwarded ports
GUEST_SSH_PORT = 22
GUEST_WEB_PORT = 80
GUEST_SAMBA_PORT = 445
GUEST_FILEBROWSER_PORT = 3670


class ConfigFormat(Enum):
    """Supported configuration file formats."""
    JSON = "json"
    ENV = "env"


def parse_size(size: str) -> int:
    """
    Convert a qemu style size ("20G", "512M") to bytes.

    Raises:
        ValueError: If the size string is malformed
    """
    match = SIZE_PATTERN.match(str(size).strip().upper())
    if not match:
        raise ValueError(f"Invalid size: {size}")
    number, unit = match.groups()
    return int(number) * SIZE_UNITS[unit]


@dataclass(frozen=True)
class LabConfig:
    """Sandbox configuration, built once at startup."""
    base_dir: str = field(default_factory=os.getcwd)
    disks_dir: str = ""
    iso_dir: str = ""
    ram: str = "4G"
    cpus: int = 4
    system_disk_size: str = "32G"
    storage_disk_size: str = "20G"
    storage_disk_count: int = 4
    image_format: str = "qcow2"
    ssh_port: int = 2222
    web_port: int = 8080
    samba_port: int = 4450
    filebrowser_port: int = 3670
    iso_filename: str = "openmediavault.iso"
    iso_url: str = "https://sourceforge.net/projects/openmediavault/files/latest/download"
    emulator_binary: str = "qemu-system-x86_64"
    image_binary: str = "qemu-img"
    display: str = "gtk"
    log_level: str = "INFO"
    log_file: str = ""
    max_command_timeout: int = 300
    download_timeout: int = 60

    def __post_init__(self):
        """Resolve directories that default to locations under base_dir."""
        if not self.disks_dir:
            object.__setattr__(self, 'disks_dir', os.path.join(self.base_dir, 'disks'))
        if not self.iso_dir:
            object.__setattr__(self, 'iso_dir', os.path.join(self.base_dir, 'iso'))
        if not self.log_file:
            object.__setattr__(self, 'log_file', os.path.join(self.base_dir, 'nasvm.log'))

    @property
    def system_disk(self) -> str:
        return os.path.join(self.disks_dir, f"system.{self.image_format}")

    @property
    def iso_file(self) -> str:
        return os.path.join(self.iso_dir, self.iso_filename)

    @property
    def slot_indices(self) -> range:
        return range(1, self.storage_disk_count + 1)

    def slot_paths(self, index: int) -> SlotPaths:
        """File names for storage slot ``index``."""
        live = os.path.join(self.disks_dir, f"storage{index}.{self.image_format}")
        return SlotPaths(index=index, live=live, backup=f"{live}.backup", failed=f"{live}.failed")

    @property
    def port_forwards(self) -> Dict[int, int]:
        """Host port to guest port mapping, in invocation order."""
        return {
            self.ssh_port: GUEST_SSH_PORT,
            self.web_port: GUEST_WEB_PORT,
            self.samba_port: GUEST_SAMBA_PORT,
            self.filebrowser_port: GUEST_FILEBROWSER_PORT,
        }


class ConfigManager:
    """Loads and validates the sandbox configuration."""

    # Environment variable mappings
    ENV_MAPPINGS = {
        'NASVM_BASE_DIR': 'base_dir',
        'NASVM_DISKS_DIR': 'disks_dir',
        'NASVM_ISO_DIR': 'iso_dir',
        'NASVM_RAM': 'ram',
        'NASVM_CPUS': 'cpus',
        'NASVM_SYSTEM_DISK_SIZE': 'system_disk_size',
        'NASVM_STORAGE_DISK_SIZE': 'storage_disk_size',
        'NASVM_STORAGE_DISK_COUNT': 'storage_disk_count',
        'NASVM_IMAGE_FORMAT': 'image_format',
        'NASVM_SSH_PORT': 'ssh_port',
        'NASVM_WEB_PORT': 'web_port',
        'NASVM_SAMBA_PORT': 'samba_port',
        'NASVM_FILEBROWSER_PORT': 'filebrowser_port',
        'NASVM_ISO_FILENAME': 'iso_filename',
        'NASVM_ISO_URL': 'iso_url',
        'NASVM_EMULATOR': 'emulator_binary',
        'NASVM_QEMU_IMG': 'image_binary',
        'NASVM_DISPLAY': 'display',
        'NASVM_LOG_LEVEL': 'log_level',
        'NASVM_LOG_FILE': 'log_file',
        'NASVM_MAX_COMMAND_TIMEOUT': 'max_command_timeout',
        'NASVM_DOWNLOAD_TIMEOUT': 'download_timeout',
    }

    INT_KEYS = {
        'cpus', 'storage_disk_count', 'ssh_port', 'web_port', 'samba_port',
        'filebrowser_port', 'max_command_timeout', 'download_timeout'
    }

    SIZE_KEYS = {'ram', 'system_disk_size', 'storage_disk_size'}

    SUPPORTED_FORMATS = {'qcow2', 'raw', 'vdi', 'vmdk'}

    def __init__(self, config_file_path: Optional[str] = None, use_dotenv: bool = True):
        """
        Initialize the ConfigManager.

        Args:
            config_file_path: Optional JSON or .env style configuration file
            use_dotenv: Load a .env file from the working directory first
        """
        self.config_file_path = config_file_path
        self.use_dotenv = use_dotenv
        self._config: Optional[LabConfig] = None

    def load_config(self) -> LabConfig:
        """
        Load configuration from defaults, config file and environment.

        Returns:
            Validated LabConfig

        Raises:
            ValueError: If a value is invalid
        """
        if self._config is not None:
            return self._config

        if self.use_dotenv:
            load_dotenv()

        config_dict: Dict[str, Any] = {}

        if self.config_file_path:
            if not os.path.exists(self.config_file_path):
                raise ValueError(f"Config file not found: {self.config_file_path}")
            config_dict.update(self._load_config_file(self.config_file_path))

        # Environment overrides the file
        config_dict.update(self._load_from_environment())

        known = {f.name for f in fields(LabConfig)}
        unknown = set(config_dict) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        config = LabConfig(**config_dict)
        self._validate_config(config)

        self._config = config
        logger.info("Configuration loaded successfully")
        return config

    def reload_config(self) -> LabConfig:
        """Force a reload from all sources."""
        self._config = None
        return self.load_config()

    def _load_config_file(self, file_path: str) -> Dict[str, Any]:
        """
        Load configuration from a JSON or .env style file.

        Args:
            file_path: Path to configuration file

        Returns:
            Dictionary of configuration values
        """
        path_obj = Path(file_path)
        format_type = ConfigFormat.JSON if path_obj.suffix.lower() == '.json' else ConfigFormat.ENV

        if format_type == ConfigFormat.JSON:
            try:
                with open(file_path, 'r') as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in {file_path}: {e}") from e
            if not isinstance(data, dict):
                raise ValueError(f"Config file {file_path} must contain an object")
            return {key: self._coerce(key, value) for key, value in data.items()}

        config = {}
        for env_key, value in dotenv_values(file_path).items():
            if env_key in self.ENV_MAPPINGS and value is not None:
                config_key = self.ENV_MAPPINGS[env_key]
                config[config_key] = self._coerce(config_key, value)
            else:
                logger.warning(f"Ignoring unknown setting {env_key} in {file_path}")
        return config

    def _load_from_environment(self) -> Dict[str, Any]:
        """Load configuration values from NASVM_* environment variables."""
        config = {}

        for env_key, config_key in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_key)
            if env_value is not None:
                config[config_key] = self._coerce(config_key, env_value)

        return config

    def _coerce(self, config_key: str, value: Any) -> Any:
        """Convert a raw value to the type of the config field."""
        if config_key in self.INT_KEYS:
            try:
                return int(value)
            except (TypeError, ValueError):
                raise ValueError(f"Invalid integer for {config_key}: {value!r}")
        if config_key in self.SIZE_KEYS:
            # JSON numbers arrive as int
            return str(value).strip().upper()
        return value if not isinstance(value, str) else value.strip()

    def _validate_config(self, config: LabConfig) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if config.cpus <= 0:
            raise ValueError("cpus must be positive")

        if config.storage_disk_count <= 0:
            raise ValueError("storage_disk_count must be positive")

        if config.max_command_timeout <= 0:
            raise ValueError("max_command_timeout must be positive")

        if config.download_timeout <= 0:
            raise ValueError("download_timeout must be positive")

        for name in ('ram', 'system_disk_size', 'storage_disk_size'):
            parse_size(getattr(config, name))

        # QEMU reads a bare -m number as MiB, not bytes
        if not config.ram.endswith(('K', 'M', 'G', 'T')):
            raise ValueError(f"ram needs a unit suffix (K, M, G or T): {config.ram}")

        ports = [config.ssh_port, config.web_port, config.samba_port, config.filebrowser_port]
        for port in ports:
            if not 1 <= port <= 65535:
                raise ValueError(f"Invalid port: {port}")
        if len(set(ports)) != len(ports):
            raise ValueError(f"Host ports must be distinct: {ports}")

        if config.image_format not in self.SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported image format: {config.image_format}")

        valid_log_levels = {'DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'}
        if config.log_level.upper() not in valid_log_levels:
            raise ValueError(f"Invalid log level: {config.log_level}")

        for path in (config.base_dir, config.disks_dir, config.iso_dir, config.log_file):
            if not os.path.isabs(path):
                raise ValueError(f"Path must be absolute: {path}")

        if os.sep in config.iso_filename:
            raise ValueError(f"iso_filename must be a bare file name: {config.iso_filename}")

