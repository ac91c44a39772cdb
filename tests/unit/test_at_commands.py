from __future__ import annotations

import unittest

from protocol import at_commands


class AtCommandTests(unittest.TestCase):
    def test_command_mode_has_no_terminator(self) -> None:
        self.assertEqual(at_commands.enter_command_mode(), "+++")

    def test_fixed_commands(self) -> None:
        self.assertEqual(at_commands.restart(), "AT+RESTART\r\n")
        self.assertEqual(at_commands.set_role(), "AT+ROLE=1\r\n")
        self.assertEqual(at_commands.stop_observer(), "AT+OBSERVER=0\r\n")

    def test_start_observer_passes_threshold_through(self) -> None:
        self.assertEqual(at_commands.start_observer("-60"), "AT+OBSERVER=1,4,,,-60\r\n")
        self.assertEqual(at_commands.start_observer("abc"), "AT+OBSERVER=1,4,,,abc\r\n")


if __name__ == "__main__":
    unittest.main()
