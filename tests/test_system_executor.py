"""Unit tests for SystemCommandExecutor."""

import unittest
from unittest.mock import Mock, patch
import subprocess

from nasvm.config_manager import LabConfig
from nasvm.system_executor import SystemCommandExecutor, CommandType


def completed(returncode=0, stdout="", stderr=""):
    result = Mock()
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


class TestSystemCommandExecutor(unittest.TestCase):
    """Test cases for SystemCommandExecutor class."""

    def setUp(self):
        """Set up test fixtures."""
        self.executor = SystemCommandExecutor()

    def test_validate_file_path_valid(self):
        """Test valid image path validation."""
        valid_paths = [
            '/srv/lab/disks/storage1.qcow2',
            '/tmp/with space/system.qcow2',
            '/home/user/disks/storage2.qcow2.failed',
        ]

        for path in valid_paths:
            with self.subTest(path=path):
                self.assertTrue(self.executor._validate_file_path(path))

    def test_validate_file_path_invalid(self):
        """Test invalid image path validation."""
        invalid_paths = [
            'disks/storage1.qcow2',
            '../etc/passwd',
            '/tmp/bad\nname',
            '',
        ]

        for path in invalid_paths:
            with self.subTest(path=path):
                self.assertFalse(self.executor._validate_file_path(path))

    def test_validate_size(self):
        """Test image size validation."""
        for size in ('20G', '512M', '1T', '1048576'):
            with self.subTest(size=size):
                self.assertTrue(self.executor._validate_size(size))
        for size in ('0G', '20GB', '-1G', '20g', '', 20, None):
            with self.subTest(size=size):
                self.assertFalse(self.executor._validate_size(size))

    @patch('subprocess.run')
    def test_execute_image_create(self, mock_run):
        """Test qemu-img create arguments."""
        mock_run.return_value = completed(stdout="Formatting 'storage1.qcow2'")

        success, stdout, stderr = self.executor.execute_image_create('/srv/disks/storage1.qcow2', '20G')

        self.assertTrue(success)
        self.assertEqual(stdout, "Formatting 'storage1.qcow2'")
        self.assertEqual(stderr, "")

        mock_run.assert_called_once()
        call_args = mock_run.call_args[0][0]
        self.assertEqual(call_args, ['qemu-img', 'create', '-f', 'qcow2', '/srv/disks/storage1.qcow2', '20G'])
        self.assertEqual(mock_run.call_args[1]['timeout'], 300)
        self.assertTrue(mock_run.call_args[1]['capture_output'])

    @patch('subprocess.run')
    def test_execute_image_create_invalid_arguments(self, mock_run):
        """Test qemu-img create rejects bad input before running anything."""
        with self.assertRaises(ValueError) as context:
            self.executor.execute_image_create('storage1.qcow2', '20G')
        self.assertIn("Invalid image path", str(context.exception))

        with self.assertRaises(ValueError) as context:
            self.executor.execute_image_create('/srv/disks/storage1.qcow2', '20 GB')
        self.assertIn("Invalid image size", str(context.exception))

        with self.assertRaises(ValueError) as context:
            self.executor.execute_image_create('/srv/disks/storage1.qcow2', 1073741824)
        self.assertIn("Invalid image size", str(context.exception))

        with self.assertRaises(ValueError) as context:
            self.executor.execute_image_create('/srv/disks/storage1.qcow2', '20G', image_format='iso')
        self.assertIn("Unsupported image format", str(context.exception))

        mock_run.assert_not_called()

    @patch('subprocess.run')
    def test_execute_image_info(self, mock_run):
        """Test qemu-img info arguments."""
        mock_run.return_value = completed(stdout='{"virtual-size": 1024}')

        success, stdout, _ = self.executor.execute_image_info('/srv/disks/system.qcow2')

        self.assertTrue(success)
        self.assertEqual(stdout, '{"virtual-size": 1024}')
        self.assertEqual(mock_run.call_args[0][0],
                         ['qemu-img', 'info', '-U', '--output=json', '/srv/disks/system.qcow2'])

    @patch('subprocess.run')
    def test_custom_binaries_from_config(self, mock_run):
        """Test binaries and timeout taken from the lab configuration."""
        mock_run.return_value = completed()
        config = LabConfig(base_dir='/srv/lab', image_binary='/opt/qemu/bin/qemu-img',
                           max_command_timeout=30)
        executor = SystemCommandExecutor.from_config(config)

        executor.execute_image_info('/srv/lab/disks/system.qcow2')

        self.assertEqual(mock_run.call_args[0][0][0], '/opt/qemu/bin/qemu-img')
        self.assertEqual(mock_run.call_args[1]['timeout'], 30)

    @patch('subprocess.run')
    def test_execute_command_failure(self, mock_run):
        """Test command execution failure."""
        mock_run.return_value = completed(returncode=1, stderr="Could not open")

        success, stdout, stderr = self.executor.execute_image_info('/srv/disks/storage1.qcow2')

        self.assertFalse(success)
        self.assertEqual(stdout, "")
        self.assertEqual(stderr, "Could not open")

    @patch('subprocess.run')
    def test_execute_command_timeout(self, mock_run):
        """Test command execution timeout."""
        mock_run.side_effect = subprocess.TimeoutExpired('qemu-img', 300)

        success, stdout, stderr = self.executor.execute_image_info('/srv/disks/storage1.qcow2')

        self.assertFalse(success)
        self.assertEqual(stdout, "")
        self.assertEqual(stderr, "Command timed out")

    @patch('subprocess.run')
    def test_execute_command_binary_missing(self, mock_run):
        """Test a missing qemu-img binary is reported as a failure."""
        mock_run.side_effect = FileNotFoundError(2, 'No such file or directory')

        success, _, stderr = self.executor.execute_image_create('/srv/disks/storage1.qcow2', '20G')

        self.assertFalse(success)
        self.assertIn('No such file', stderr)

    @patch('subprocess.run')
    def test_execute_emulator(self, mock_run):
        """Test the emulator runs attached without capture or timeout."""
        mock_run.return_value = completed(returncode=1)
        command = ['qemu-system-x86_64', '-enable-kvm', '-m', '4G']

        self.assertEqual(self.executor.execute_emulator(command), 1)
        mock_run.assert_called_once_with(command, check=False)

    @patch('subprocess.run')
    def test_execute_emulator_missing_binary(self, mock_run):
        """Test the OSError from a missing emulator propagates."""
        mock_run.side_effect = FileNotFoundError(2, 'No such file or directory')

        with self.assertRaises(FileNotFoundError):
            self.executor.execute_emulator(['qemu-system-x86_64', '-m', '4G'])

    @patch('subprocess.run')
    def test_execute_emulator_rejects_commands(self, mock_run):
        """Test emulator command validation."""
        invalid_commands = [
            [],
            ['/bin/sh', '-c', 'id'],
            ['qemu-system-x86_64', '-monitor', 'stdio'],
            ['qemu-system-x86_64', '-m'],
        ]

        for command in invalid_commands:
            with self.subTest(command=command):
                with self.assertRaises(ValueError):
                    self.executor.execute_emulator(command)

        mock_run.assert_not_called()

    def test_validate_command_args_qemu_img(self):
        """Test command argument validation for qemu-img."""
        valid_args = ['create', '-f', 'raw', '/srv/disks/storage1.raw', '20G']
        self.executor._validate_command_args(CommandType.QEMU_IMG, valid_args)

        invalid_args = ['convert', '/srv/disks/storage1.qcow2']
        with self.assertRaises(ValueError):
            self.executor._validate_command_args(CommandType.QEMU_IMG, invalid_args)

    def test_validate_command_args_emulator(self):
        """Test command argument validation for the emulator."""
        valid_args = [
            '-drive', 'file=/srv/disks/storage1.qcow2,format=qcow2,if=none,id=disk1,serial=STORAGE1',
            '-device', 'virtio-blk-pci,drive=disk1,serial=STORAGE1',
        ]
        self.executor._validate_command_args(CommandType.EMULATOR, valid_args)

        invalid_args = ['-drive', 'file=/srv/a.qcow2', '--malicious']
        with self.assertRaises(ValueError):
            self.executor._validate_command_args(CommandType.EMULATOR, invalid_args)


if __name__ == '__main__':
    unittest.main()
