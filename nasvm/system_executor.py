"""Validated execution of qemu-img and the emulator binary."""

import subprocess
import logging
import os
import shlex
from typing import List, Tuple
from enum import Enum
import re


logger = logging.getLogger(__name__)


class CommandType(Enum):
    """Supported command types for validation."""
    QEMU_IMG = "qemu-img"
    EMULATOR = "emulator"


class SystemCommandExecutor:
    """Runs qemu-img and the emulator with argument validation."""

    # Allowed flags and which of them take a value
    ALLOWED_COMMANDS = {
        CommandType.QEMU_IMG: {
            'allowed_args': {'create', 'info', '-f', '--output=json', '-U', '-q'},
            'value_flags': {'-f'},
        },
        CommandType.EMULATOR: {
            'allowed_args': {
                '-enable-kvm', '-m', '-smp', '-drive', '-device', '-cdrom',
                '-boot', '-netdev', '-display'
            },
            'value_flags': {'-m', '-smp', '-drive', '-device', '-cdrom', '-boot', '-netdev', '-display'},
        },
    }

    ALLOWED_FORMATS = {'qcow2', 'raw', 'vdi', 'vmdk'}

    SIZE_PATTERN = re.compile(r'^[1-9][0-9]*[KMGT]?$')

    def __init__(self,
                 image_binary: str = 'qemu-img',
                 emulator_binary: str = 'qemu-system-x86_64',
                 timeout: int = 300):
        """
        Initialize the SystemCommandExecutor.

        Args:
            image_binary: qemu-img executable
            emulator_binary: QEMU system emulator executable
            timeout: Timeout in seconds for qemu-img calls
        """
        self.binaries = {
            CommandType.QEMU_IMG: image_binary,
            CommandType.EMULATOR: emulator_binary,
        }
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'SystemCommandExecutor':
        return cls(
            image_binary=config.image_binary,
            emulator_binary=config.emulator_binary,
            timeout=config.max_command_timeout,
        )

    def execute_image_create(self,
                             path: str,
                             size: str,
                             image_format: str = 'qcow2') -> Tuple[bool, str, str]:
        """
        Create an empty disk image with qemu-img.

        Args:
            path: Absolute path of the image to create
            size: Virtual size ("20G")
            image_format: Image format

        Returns:
            Tuple of (success, stdout, stderr)
        """
        if not self._validate_file_path(path):
            raise ValueError(f"Invalid image path: {path}")

        if not self._validate_size(size):
            raise ValueError(f"Invalid image size: {size}")

        if image_format not in self.ALLOWED_FORMATS:
            raise ValueError(f"Unsupported image format: {image_format}")

        return self._execute_command(CommandType.QEMU_IMG, ['create', '-f', image_format, path, size])

    def execute_image_info(self, path: str) -> Tuple[bool, str, str]:
        """
        Query an image with ``qemu-img info --output=json``, also while the VM holds it.

        Returns:
            Tuple of (success, stdout, stderr)
        """
        if not self._validate_file_path(path):
            raise ValueError(f"Invalid image path: {path}")

        return self._execute_command(CommandType.QEMU_IMG, ['info', '-U', '--output=json', path])

    def execute_emulator(self, command: List[str]) -> int:
        """
        Run the emulator in the foreground until it exits.

        Args:
            command: Full argument list, starting with the emulator binary

        Returns:
            The emulator exit code
        """
        if not command:
            raise ValueError("Command cannot be empty")

        binary = self.binaries[CommandType.EMULATOR]
        if command[0] != binary:
            raise ValueError(f"Binary not allowed: {command[0]}")

        args = command[1:]
        self._validate_command_args(CommandType.EMULATOR, args)

        command_str = ' '.join(shlex.quote(arg) for arg in command)
        logger.info(f"Starting emulator: {command_str}", extra={'command': command_str})

        try:
            # No capture, no timeout: the VM runs until the operator shuts it down
            result = subprocess.run(command, check=False)
        except OSError as e:
            logger.error(f"Error starting emulator {command_str}: {e}")
            raise

        if result.returncode == 0:
            logger.info("Emulator exited normally", extra={'exit_code': 0})
        else:
            logger.error(f"Emulator exited with code {result.returncode}",
                         extra={'exit_code': result.returncode})
        return result.returncode

    def _execute_command(self,
                         command_type: CommandType,
                         args: List[str]) -> Tuple[bool, str, str]:
        """
        Execute a validated command with logging and error handling.

        Args:
            command_type: Type of command to execute
            args: Command arguments

        Returns:
            Tuple of (success, stdout, stderr)
        """
        self._validate_command_args(command_type, args)

        full_command = [self.binaries[command_type]] + args

        command_str = ' '.join(shlex.quote(arg) for arg in full_command)
        logger.info(f"Executing command: {command_str}", extra={'command': command_str})

        try:
            result = subprocess.run(
                full_command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False
            )

            success = result.returncode == 0

            if success:
                logger.info(f"Command executed successfully: {command_str}")
            else:
                logger.error(f"Command failed with return code {result.returncode}: {command_str}")
                logger.error(f"Error output: {result.stderr}")

            return success, result.stdout, result.stderr

        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out: {command_str}")
            return False, "", "Command timed out"

        except OSError as e:
            logger.error(f"Error executing command {command_str}: {e}")
            return False, "", str(e)

    def _validate_command_args(self, command_type: CommandType, args: List[str]) -> None:
        """
        Validate command arguments against the allowed flags.

        Raises:
            ValueError: If any argument is not allowed
        """
        rules = self.ALLOWED_COMMANDS[command_type]
        allowed_args = rules['allowed_args']
        value_flags = rules['value_flags']

        expect_value = False
        for arg in args:
            if expect_value:
                expect_value = False
                if '\n' in arg or '\0' in arg:
                    raise ValueError(f"Argument not allowed for {command_type.value}: {arg!r}")
                continue

            if arg in allowed_args:
                expect_value = arg in value_flags
                continue

            # Positional image paths and sizes
            if self._validate_file_path(arg) or self._validate_size(arg):
                continue

            raise ValueError(f"Argument not allowed for {command_type.value}: {arg}")

        if expect_value:
            raise ValueError(f"Missing value for last option of {command_type.value}")

    def _validate_file_path(self, path: str) -> bool:
        """Absolute path without control characters or option-like prefix."""
        return (
            bool(path)
            and os.path.isabs(path)
            and not any(ch in path for ch in ('\n', '\r', '\0'))
        )

    def _validate_size(self, size: str) -> bool:
        return isinstance(size, str) and bool(self.SIZE_PATTERN.match(size))
