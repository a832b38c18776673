"""Tests for the interactive menu."""

import io
import os
import shutil
import tempfile
import unittest
from unittest.mock import patch

from fakes import FakeImageExecutor

from nasvm.cli import MenuApp, check_host, create_arg_parser, main
from nasvm.config_manager import LabConfig
from nasvm.dependency_check import DependencyReport
from nasvm.models import SlotState


class MenuTestCase(unittest.TestCase):
    """Menu wired to a temporary lab and a fake qemu-img."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config = LabConfig(base_dir=self.temp_dir)
        self.executor = FakeImageExecutor()
        self.app = MenuApp(self.config, executor=self.executor)

        self.stdout = io.StringIO()
        stdout_patch = patch('sys.stdout', self.stdout)
        stdout_patch.start()
        self.addCleanup(stdout_patch.stop)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def answers(self, *values):
        """Script the operator's replies to ask() and confirm()."""
        return patch('builtins.input', side_effect=list(values))

    def states(self):
        return [inspection.state for inspection in self.app.disks.inspect_all()]

    @property
    def output(self):
        return self.stdout.getvalue()


class TestMenuLoop(MenuTestCase):

    def test_exit(self):
        with self.answers('9'):
            self.assertEqual(self.app.run(), 0)
        self.assertIn('Goodbye', self.output)

    def test_end_of_input_exits(self):
        with patch('builtins.input', side_effect=EOFError):
            self.assertEqual(self.app.run(), 0)

    def test_invalid_option_then_exit(self):
        with self.answers('42', '', '9'):
            self.assertEqual(self.app.run(), 0)
        self.assertIn('Invalid option', self.output)

    def test_status_from_menu(self):
        with self.answers('5', '', '9'):
            self.app.run()
        self.assertIn('ISO not present', self.output)
        self.assertIn('Disks directory does not exist', self.output)


class TestDiskActions(MenuTestCase):

    def setUp(self):
        super().setUp()
        self.app.run_action(self.app.create_disks)

    def test_create_disks(self):
        self.assertEqual(self.states(), [SlotState.HEALTHY] * 4)
        self.assertTrue(os.path.isfile(self.config.system_disk))
        self.assertIn('Created storage4.qcow2', self.output)

    def test_create_disks_again_keeps_existing(self):
        created = len(self.executor.created)
        with self.answers('n'):
            self.assertTrue(self.app.run_action(self.app.create_disks))
        self.assertEqual(len(self.executor.created), created)

    def test_simulate_failure(self):
        with self.answers('2', 'y'):
            self.assertTrue(self.app.run_action(self.app.simulate_failure))

        self.assertEqual(self.states()[1], SlotState.FAILED)
        self.assertIn('storage2.qcow2.backup', self.output)

    def test_simulate_failure_declined(self):
        with self.answers('2', 'n'):
            self.app.run_action(self.app.simulate_failure)

        self.assertEqual(self.states(), [SlotState.HEALTHY] * 4)
        self.assertIn('Operation cancelled', self.output)

    def test_simulate_failure_invalid_slot(self):
        with self.answers('7'):
            self.assertFalse(self.app.run_action(self.app.simulate_failure))

        self.assertIn('Invalid storage slot 7', self.output)
        self.assertEqual(self.states(), [SlotState.HEALTHY] * 4)

    def test_simulate_failure_non_numeric_slot(self):
        for answer in ('two', '²', '1.5'):
            with self.subTest(answer=answer):
                with self.answers(answer):
                    self.assertFalse(self.app.run_action(self.app.simulate_failure))

        self.assertIn("Invalid storage slot '²'", self.output)
        self.assertEqual(self.states(), [SlotState.HEALTHY] * 4)

    def test_bad_slot_answer_keeps_session(self):
        with self.answers('7', '²', '', '9'):
            self.assertEqual(self.app.run(), 0)

        self.assertIn('Invalid storage slot', self.output)
        self.assertIn('Goodbye', self.output)

    def test_simulate_failure_of_failed_slot(self):
        with self.answers('3', 'y', '3'):
            self.app.run_action(self.app.simulate_failure)
            self.assertFalse(self.app.run_action(self.app.simulate_failure))

        self.assertIn('storage3 is FAILED (expected HEALTHY)', self.output)

    def test_restore(self):
        with open(self.config.slot_paths(1).live, 'ab') as f:
            f.write(b'raid member data')
        with open(self.config.slot_paths(1).live, 'rb') as f:
            original = f.read()

        with self.answers('1', 'y', '1', '1'):
            self.app.run_action(self.app.simulate_failure)
            self.assertTrue(self.app.run_action(self.app.replace_failed))

        self.assertEqual(self.states()[0], SlotState.HEALTHY)
        with open(self.config.slot_paths(1).live, 'rb') as f:
            self.assertEqual(f.read(), original)
        self.assertIn('restored with original data', self.output)

    def test_replace(self):
        with self.answers('4', 'y', '2', '4', 'y'):
            self.app.run_action(self.app.simulate_failure)
            self.assertTrue(self.app.run_action(self.app.replace_failed))

        paths = self.config.slot_paths(4)
        self.assertEqual(self.states()[3], SlotState.HEALTHY)
        self.assertFalse(os.path.exists(paths.backup))
        self.assertFalse(os.path.exists(paths.failed))
        self.assertIn('New disk storage4 created', self.output)

    def test_replace_without_failed_disk(self):
        self.app.run_action(self.app.replace_failed)
        self.assertIn('No failed disk found', self.output)

    def test_replace_cancelled(self):
        with self.answers('1', 'y', '0'):
            self.app.run_action(self.app.simulate_failure)
            self.app.run_action(self.app.replace_failed)

        self.assertEqual(self.states()[0], SlotState.FAILED)

    def test_status_shows_failed_slot(self):
        with self.answers('2', 'y'):
            self.app.run_action(self.app.simulate_failure)

        self.app.run_action(self.app.show_status)

        self.assertIn('storage2.qcow2: FAILED', self.output)
        self.assertIn('storage1.qcow2: virtual size 20.0G', self.output)

    def test_status_shows_inconsistent_slot(self):
        open(self.config.slot_paths(3).backup, 'wb').close()

        self.app.run_action(self.app.show_status)

        self.assertIn('storage3.qcow2: INCONSISTENT (files: live, backup)', self.output)

    def test_reset(self):
        with self.answers('y', 'y'):
            self.assertTrue(self.app.run_action(self.app.reset))

        self.assertEqual(os.listdir(self.config.disks_dir), [])
        self.assertIn('Reset complete', self.output)

    def test_reset_cancelled(self):
        with self.answers('y', 'n'):
            self.app.run_action(self.app.reset)

        self.assertEqual(self.states(), [SlotState.HEALTHY] * 4)


class TestStartActions(MenuTestCase):

    def test_start_without_system_disk(self):
        self.assertFalse(self.app.run_action(self.app.start_vm))
        self.assertIn('System disk not found', self.output)
        self.assertEqual(self.executor.emulator_commands, [])

    def test_install_without_media(self):
        self.app.disks.create_system_disk()
        self.assertFalse(self.app.run_action(self.app.install))
        self.assertIn('Install media not found', self.output)

    def test_print_only(self):
        self.app.disks.create_all()
        self.app.print_only = True

        self.assertTrue(self.app.run_action(self.app.start_vm))

        self.assertIn('qemu-system-x86_64', self.output)
        self.assertIn('serial=STORAGE4', self.output)
        self.assertEqual(self.executor.emulator_commands, [])

    def test_start_vm(self):
        self.app.disks.create_all()
        self.executor.emulator_exit_code = 1

        with self.answers(''):
            self.assertTrue(self.app.run_action(self.app.start_vm))

        self.assertEqual(len(self.executor.emulator_commands), 1)
        self.assertIn('QEMU exited with code 1', self.output)

    def test_start_vm_declined(self):
        self.app.disks.create_all()

        with self.answers('n'):
            self.app.run_action(self.app.start_vm)

        self.assertEqual(self.executor.emulator_commands, [])


class TestEntryPoint(MenuTestCase):

    def test_arg_parser(self):
        args = create_arg_parser().parse_args(['--config', '/etc/nasvm.json', '--print-only'])
        self.assertEqual(args.config, '/etc/nasvm.json')
        self.assertTrue(args.print_only)

    @patch('nasvm.cli.check_dependencies')
    def test_check_host_missing_binary(self, mock_check):
        mock_check.return_value = DependencyReport(found=['qemu-system-x86_64'], missing=['qemu-img'])

        self.assertFalse(check_host(self.config))
        self.assertIn('Missing dependencies: qemu-img', self.output)
        self.assertIn('sudo apt install', self.output)

    @patch('nasvm.cli.check_dependencies')
    def test_check_host_ok(self, mock_check):
        mock_check.return_value = DependencyReport(found=['qemu-system-x86_64', 'qemu-img'], kvm=True)
        self.assertTrue(check_host(self.config))

    def test_main_invalid_config(self):
        missing = os.path.join(self.temp_dir, 'missing.json')
        self.assertEqual(main(['--config', missing]), 2)
        self.assertIn('Invalid configuration', self.output)

    @patch('nasvm.cli.init_logging')
    @patch('nasvm.cli.check_host', return_value=False)
    def test_main_stops_when_dependencies_missing(self, mock_check_host, mock_init_logging):
        with patch.dict(os.environ, {'NASVM_BASE_DIR': self.temp_dir}):
            self.assertEqual(main([]), 1)

        self.assertFalse(os.path.exists(self.config.disks_dir))

    @patch('nasvm.cli.init_logging')
    @patch('nasvm.cli.check_host', return_value=True)
    @patch('nasvm.cli.MenuApp')
    def test_main_interrupted(self, mock_app, mock_check_host, mock_init_logging):
        mock_app.return_value.run.side_effect = KeyboardInterrupt

        with patch.dict(os.environ, {'NASVM_BASE_DIR': self.temp_dir}):
            self.assertEqual(main(['--print-only']), 130)

        self.assertTrue(mock_app.call_args[1]['print_only'])


if __name__ == '__main__':
    unittest.main()
