from __future__ import annotations

import asyncio
import logging
import unittest

from fakes import APPLE_LINE, FAST_TIMING, GOOGLE_LINE, SAMSUNG_LINE, UNKNOWN_LINE, FakeChannel, settle, wait_for
from protocol import at_commands
from scanner.errors import BringUpError, ChannelError, DeviceBusyError
from scanner.scan_device import (
    DeviceCallbacks,
    DeviceError,
    DeviceEvent,
    InitState,
    ScanDevice,
    ScanTiming,
    derive_device_id,
    parse_manufacturer_code,
)

BRING_UP = [
    "AT+RESTART\r\n",
    "+++",
    "AT+ROLE=1\r\n",
    "AT+RESTART\r\n",
    "+++",
]


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class ParserTests(unittest.TestCase):
    def test_known_codes_are_byte_swapped(self) -> None:
        self.assertEqual(parse_manufacturer_code(APPLE_LINE), "004C")
        self.assertEqual(parse_manufacturer_code(SAMSUNG_LINE), "0075")
        self.assertEqual(parse_manufacturer_code(GOOGLE_LINE), "00E0")
        self.assertEqual(parse_manufacturer_code("0,-40,AD:ff4c00"), None)

    def test_malformed_lines(self) -> None:
        malformed = (
            "",
            "OK",
            "a,b",
            "a,b,no-colon",
            "a,b,AD:",
            "a,b,AD:0201",
            "a,b,AD:FF4C",
            "a,b,AD:FFZZ00",
            "0,1,AD:0201:FF4C00",
        )
        for line in malformed:
            with self.subTest(line=line):
                self.assertIsNone(parse_manufacturer_code(line))

    def test_derive_device_id(self) -> None:
        self.assertEqual(derive_device_id("/dev/ttyUSB0"), "_dev_ttyUSB0")
        self.assertEqual(derive_device_id("COM3"), "COM3")


class ScanDeviceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.channel = FakeChannel("/dev/ttyUSB0")
        self.clock = FakeClock()
        self.events: list[DeviceEvent] = []
        self.errors: list[DeviceError] = []
        self.disconnects: list[ScanDevice] = []
        self.device = ScanDevice(
            self.channel,
            timing=FAST_TIMING,
            callbacks=DeviceCallbacks(
                on_device=self.events.append,
                on_error=self.errors.append,
                on_disconnected=self.disconnects.append,
            ),
            logger=logging.getLogger("test.device"),
            clock=self.clock,
        )
        await self.device.connect()

    async def asyncTearDown(self) -> None:
        await self.device.disconnect()

    async def _scanning(self, rssi: str = "-60") -> None:
        await self.device.start_scan(rssi)
        self.channel.writes.clear()

    async def test_bring_up_sequence(self) -> None:
        self.assertEqual(self.device.device_id, "_dev_ttyUSB0")
        await self.device.initialize()
        self.assertEqual(self.channel.writes, BRING_UP)
        self.assertIs(self.device.init_state, InitState.INITIALIZED)

        await self.device.initialize()
        self.assertEqual(len(self.channel.writes), len(BRING_UP))

    async def test_bring_up_failure_reverts_state(self) -> None:
        self.channel.fail_write = lambda data: data == "AT+ROLE=1\r\n"
        with self.assertRaises(BringUpError):
            await self.device.initialize()
        self.assertIs(self.device.init_state, InitState.UNINITIALIZED)
        self.assertEqual(self.channel.writes, BRING_UP[:2])
        self.assertEqual([item.operation for item in self.errors], ["initialize"])

    async def test_channel_lost_during_last_settle_fails_bring_up(self) -> None:
        self.device.timing = ScanTiming(settle_delays=(0.0, 0.0, 0.0, 0.0, 0.05), clear_interval=60.0)
        task = asyncio.create_task(self.device.initialize())
        await wait_for(lambda: len(self.channel.writes) == len(BRING_UP))
        self.channel.drop()

        with self.assertRaises(BringUpError):
            await task
        self.assertIs(self.device.init_state, InitState.UNINITIALIZED)
        self.assertFalse(self.device.connected)
        self.assertEqual([item.operation for item in self.errors], ["initialize"])
        self.assertEqual(len(self.disconnects), 1)

    async def test_start_scan_during_bring_up_is_busy(self) -> None:
        self.device.timing = ScanTiming(settle_delays=(0.05, 0.0, 0.0, 0.0, 0.0), clear_interval=60.0)
        task = asyncio.create_task(self.device.initialize())
        await asyncio.sleep(0)
        self.assertIs(self.device.init_state, InitState.INITIALIZING)
        with self.assertRaises(DeviceBusyError):
            await self.device.start_scan("-60")
        with self.assertRaises(DeviceBusyError):
            await self.device.initialize()
        await task
        self.assertIs(self.device.init_state, InitState.INITIALIZED)

    async def test_start_scan_runs_bring_up_then_observer(self) -> None:
        await self.device.start_scan("-60")
        self.assertEqual(self.channel.writes, BRING_UP + [at_commands.start_observer("-60")])
        self.assertTrue(self.device.scanning)

    async def test_start_scan_twice_sends_one_observer_command(self) -> None:
        await self.device.start_scan("-60")
        await self.device.start_scan("-60")
        observer = [item for item in self.channel.writes if item.startswith("AT+OBSERVER=1")]
        self.assertEqual(observer, ["AT+OBSERVER=1,4,,,-60\r\n"])

    async def test_start_scan_failure_reverts_scanning(self) -> None:
        await self.device.initialize()
        self.channel.fail_write = lambda data: data.startswith("AT+OBSERVER")
        with self.assertRaises(ChannelError):
            await self.device.start_scan("-60")
        self.assertFalse(self.device.scanning)
        self.assertEqual(self.errors[-1].operation, "start_scan")

    async def test_stop_scan_failure_still_stops(self) -> None:
        await self._scanning()
        self.channel.fail_write = lambda data: data == at_commands.stop_observer()
        with self.assertRaises(ChannelError):
            await self.device.stop_scan()
        self.assertFalse(self.device.scanning)
        self.assertEqual(self.errors[-1].operation, "stop_scan")

    async def test_stop_scan_when_idle_writes_nothing(self) -> None:
        await self.device.stop_scan()
        self.assertEqual(self.channel.writes, [])

    async def test_duplicate_within_window_reported_once(self) -> None:
        await self._scanning()
        self.device.start_report()
        self.channel.feed(APPLE_LINE)
        self.channel.feed(APPLE_LINE)
        self.assertEqual([item.manufacturer for item in self.events], ["Apple, Inc."])
        self.assertEqual(self.events[0].channel_path, "/dev/ttyUSB0")

    async def test_clear_makes_code_new_again(self) -> None:
        await self._scanning()
        self.device.start_report()
        self.channel.feed(APPLE_LINE)
        self.device.clear_seen()
        self.channel.feed(APPLE_LINE)
        self.assertEqual(len(self.events), 2)

    async def test_periodic_clear_tick(self) -> None:
        self.device.timing = ScanTiming(settle_delays=(0.0,) * 5, clear_interval=0.02)
        await self._scanning()
        self.device.start_report()
        self.channel.feed(SAMSUNG_LINE)
        await asyncio.sleep(0.06)
        self.channel.feed(SAMSUNG_LINE)
        self.assertEqual(len(self.events), 2)

    async def test_start_scan_clears_seen_codes(self) -> None:
        await self._scanning()
        self.device.start_report()
        self.channel.feed(APPLE_LINE)
        await self.device.stop_scan()
        await self.device.start_scan("-60")
        self.assertEqual(self.device.seen_codes, frozenset())

    async def test_unknown_and_malformed_lines_emit_nothing(self) -> None:
        await self._scanning()
        self.device.start_report()
        for line in (UNKNOWN_LINE, "OK", "a,b", "a,b,c", "+OBSERVER:1", ",,:"):
            self.device.handle_line(line)
        self.assertEqual(self.events, [])
        self.assertEqual(self.device.recent_detections, ())

    async def test_report_disabled_buffers_then_catches_up(self) -> None:
        await self._scanning()
        self.channel.feed(APPLE_LINE)
        self.channel.feed(SAMSUNG_LINE)
        self.channel.feed(APPLE_LINE)
        self.assertEqual(self.events, [])

        self.device.start_report()
        self.assertEqual([item.manufacturer for item in self.events], ["Apple, Inc.,Samsung Electronics Co. Ltd."])
        self.assertEqual(self.device.seen_codes, frozenset({"004C", "0075"}))

        self.channel.feed(APPLE_LINE)
        self.assertEqual(len(self.events), 1)

    async def test_catch_up_skips_stale_detections(self) -> None:
        await self._scanning()
        self.channel.feed(APPLE_LINE)
        self.clock.now += 2.0
        self.channel.feed(GOOGLE_LINE)
        self.device.start_report()
        self.assertEqual([item.manufacturer for item in self.events], ["Google"])

    async def test_start_report_with_empty_buffer_emits_nothing(self) -> None:
        self.device.start_report()
        self.assertTrue(self.device.report_enabled)
        self.assertEqual(self.events, [])

    async def test_stop_report_gates_emission(self) -> None:
        await self._scanning()
        self.device.start_report()
        self.device.stop_report()
        self.channel.feed(GOOGLE_LINE)
        self.assertEqual(self.events, [])
        self.assertFalse(self.device.report_enabled)

    async def test_channel_loss_fires_disconnected_once(self) -> None:
        await self._scanning()
        self.channel.drop()
        self.channel.drop()
        await settle()
        self.assertEqual(self.disconnects, [self.device])
        status = self.device.status()
        self.assertFalse(status.connected)
        self.assertFalse(status.scanning)
        self.assertIs(status.init_state, InitState.UNINITIALIZED)

    async def test_disconnect_stops_scan_and_closes(self) -> None:
        await self._scanning()
        await self.device.disconnect()
        self.assertEqual(self.channel.writes, [at_commands.stop_observer()])
        self.assertEqual(self.channel.close_calls, 1)
        self.assertEqual(len(self.disconnects), 1)


if __name__ == "__main__":
    unittest.main()
