from __future__ import annotations

import asyncio
import logging
import unittest
from unittest.mock import AsyncMock, patch

from fakes import APPLE_LINE, FAST_TIMING, ChannelFarm, device_settings, settle, wait_for
from protocol import at_commands
from scanner.errors import ChannelError, DeviceNotFoundError
from scanner.fleet import ConnectionStats, FleetCallbacks, FleetSupervisor
from scanner.scan_device import DeviceEvent, DeviceStatus, ScanTiming

PATH_A = "/dev/ttyUSB0"
PATH_B = "/dev/ttyUSB1"
ID_A = "_dev_ttyUSB0"
ID_B = "_dev_ttyUSB1"
SLOW_LAST_SETTLE = ScanTiming(settle_delays=(0.0, 0.0, 0.0, 0.0, 0.05), clear_interval=60.0)


class FleetSupervisorTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.farm = ChannelFarm()
        self.events: list[DeviceEvent] = []
        self.connected: list[DeviceStatus] = []
        self.disconnected: list[DeviceStatus] = []
        self.fleet = self._fleet(PATH_A, PATH_B)

    async def asyncTearDown(self) -> None:
        await self.fleet.shutdown()

    def _fleet(self, *paths: str, **kwargs) -> FleetSupervisor:
        options = {"base_delay": 0.001, "max_attempts": 5, "timing": FAST_TIMING}
        options.update(kwargs)
        return FleetSupervisor(
            device_settings(*paths),
            logger=logging.getLogger("test.fleet"),
            default_rssi="-50",
            channel_factory=self.farm,
            callbacks=FleetCallbacks(
                on_device=self.events.append,
                on_connected=self.connected.append,
                on_disconnected=self.disconnected.append,
            ),
            **options,
        )

    def assertStatsConsistent(self) -> None:
        stats = self.fleet.get_connection_stats()
        self.assertEqual(stats.total, stats.connected + stats.reconnecting + stats.failed)

    async def test_all_devices_connect(self) -> None:
        await self.fleet.initialize_all()
        self.assertEqual(self.fleet.get_connection_stats(), ConnectionStats(total=2, connected=2, failed=0, reconnecting=0))
        self.assertEqual(sorted(item.device_id for item in self.connected), [ID_A, ID_B])
        self.assertEqual(len(self.fleet.devices_info()), 2)

    async def test_initial_failure_is_not_retried(self) -> None:
        self.farm.fail_paths.add(PATH_B)
        await self.fleet.initialize_all()
        self.assertEqual(self.fleet.get_connection_stats(), ConnectionStats(total=2, connected=1, failed=1, reconnecting=0))
        self.assertFalse(self.fleet.has_pending_reconnect(ID_B))

    async def test_device_loggers_carry_device_id(self) -> None:
        await self.fleet.initialize_all()
        self.assertEqual(self.fleet.get_device(ID_A).logger.name, f"test.fleet.{ID_A}")

        fleet = self._fleet(PATH_A, device_log_prefix=False)
        await fleet.initialize_all()
        self.assertEqual(fleet.get_device(ID_A).logger.name, "test.fleet")
        await fleet.shutdown()

    async def test_disabled_devices_are_ignored(self) -> None:
        settings = device_settings(PATH_A) + [device_settings(PATH_B)[0].model_copy(update={"enabled": False})]
        fleet = FleetSupervisor(settings, logger=logging.getLogger("test.fleet"), timing=FAST_TIMING, channel_factory=self.farm)
        await fleet.initialize_all()
        self.assertEqual(fleet.device_ids, [ID_A])
        self.assertEqual(self.farm.built(PATH_B), 0)
        await fleet.shutdown()

    async def test_disconnect_reconnects_with_fresh_device(self) -> None:
        await self.fleet.initialize_all()
        first = self.fleet.get_device(ID_A)
        self.farm.latest(PATH_A).drop()

        self.assertEqual([item.device_id for item in self.disconnected], [ID_A])
        self.assertEqual(self.fleet.get_connection_stats().reconnecting, 1)
        self.assertStatsConsistent()

        await wait_for(lambda: self.fleet.get_device(ID_A) is not None)
        self.assertIsNot(self.fleet.get_device(ID_A), first)
        self.assertEqual(self.fleet.reconnect_attempts(ID_A), 0)
        self.assertEqual(self.fleet.get_connection_stats().connected, 2)

    async def test_one_timer_per_device(self) -> None:
        await self.fleet.initialize_all()
        with patch.object(self.fleet, "_reconnect_after", new=AsyncMock()) as reconnect:
            self.farm.latest(PATH_A).drop()
            self.farm.latest(PATH_A).drop()
            self.assertFalse(self.fleet.schedule_reconnect(ID_A))
            await settle()
        reconnect.assert_awaited_once()

    async def test_backoff_doubles_per_attempt(self) -> None:
        fleet = self._fleet(PATH_A, base_delay=10.0)
        fleet._reconnect_attempts[ID_A] = 3
        with patch.object(fleet, "_reconnect_after", new=AsyncMock()) as reconnect:
            self.assertTrue(fleet.schedule_reconnect(ID_A))
            await settle()
        reconnect.assert_awaited_once_with(ID_A, 80.0)

    async def test_gives_up_after_max_attempts(self) -> None:
        await self.fleet.initialize_all()
        self.farm.fail_paths.add(PATH_A)
        self.farm.latest(PATH_A).drop()

        await wait_for(lambda: not self.fleet.has_pending_reconnect(ID_A))
        await settle()
        # One initial channel plus five failed reconnect attempts.
        self.assertEqual(self.farm.built(PATH_A), 6)
        self.assertEqual(self.fleet.get_connection_stats(), ConnectionStats(total=2, connected=1, failed=1, reconnecting=0))
        self.assertEqual(self.fleet.reconnect_attempts(ID_A), 0)

    async def test_reconnect_failed_retries_idle_devices(self) -> None:
        self.farm.fail_paths.add(PATH_B)
        await self.fleet.initialize_all()
        self.farm.fail_paths.clear()
        await self.fleet.reconnect_failed()
        self.assertEqual(self.fleet.get_connection_stats().connected, 2)
        self.assertEqual(self.farm.built(PATH_A), 1)

    async def test_channel_lost_during_last_settle_is_not_registered(self) -> None:
        fleet = self._fleet(PATH_A, timing=SLOW_LAST_SETTLE)
        task = asyncio.create_task(fleet.initialize_all())
        await wait_for(lambda: self.farm.built(PATH_A) == 1 and len(self.farm.latest(PATH_A).writes) == 5)
        self.farm.latest(PATH_A).drop()
        await task

        self.assertIsNone(fleet.get_device(ID_A))
        self.assertEqual(fleet.get_connection_stats(), ConnectionStats(total=1, connected=0, failed=1, reconnecting=0))
        self.assertEqual(self.connected, [])
        await fleet.shutdown()

    async def test_channel_lost_during_reconnect_settle_counts_as_attempt(self) -> None:
        fleet = self._fleet(PATH_A, timing=SLOW_LAST_SETTLE)
        await fleet.initialize_all()
        self.farm.latest(PATH_A).drop()

        await wait_for(lambda: self.farm.built(PATH_A) == 2 and len(self.farm.latest(PATH_A).writes) == 5)
        self.farm.latest(PATH_A).drop()
        await wait_for(lambda: fleet.reconnect_attempts(ID_A) == 1)
        self.assertTrue(fleet.has_pending_reconnect(ID_A))

        await wait_for(lambda: fleet.get_device(ID_A) is not None)
        self.assertTrue(fleet.get_device(ID_A).connected)
        self.assertEqual(self.farm.built(PATH_A), 3)
        self.assertEqual(fleet.reconnect_attempts(ID_A), 0)
        await fleet.shutdown()
    async def test_targeted_command_on_missing_device(self) -> None:
        await self.fleet.initialize_all()
        with self.assertRaises(DeviceNotFoundError):
            await self.fleet.start_scan("-60", device_id="nope")
        with self.assertRaises(DeviceNotFoundError):
            await self.fleet.stop_report(device_id="nope")

    async def test_targeted_failure_propagates(self) -> None:
        await self.fleet.initialize_all()
        self.farm.latest(PATH_A).fail_write = lambda data: data.startswith("AT+OBSERVER")
        with self.assertRaises(ChannelError):
            await self.fleet.start_scan("-60", device_id=ID_A)

    async def test_fleet_wide_command_never_rejects(self) -> None:
        await self.fleet.initialize_all()
        for path in (PATH_A, PATH_B):
            self.farm.latest(path).fail_write = lambda data: data.startswith("AT+OBSERVER")
        failed = await self.fleet.start_scan("-60")
        self.assertEqual(sorted(failed), [ID_A, ID_B])

    async def test_fleet_wide_start_scan_uses_default_rssi(self) -> None:
        await self.fleet.initialize_all()
        failed = await self.fleet.start_scan()
        self.assertEqual(failed, {})
        for path in (PATH_A, PATH_B):
            self.assertEqual(self.farm.latest(path).writes[-1], at_commands.start_observer("-50"))

    async def test_report_fan_out_forwards_events(self) -> None:
        await self.fleet.initialize_all()
        await self.fleet.start_scan("-60")
        await self.fleet.start_report()
        self.farm.latest(PATH_B).feed(APPLE_LINE)
        self.assertEqual([(item.device_id, item.manufacturer) for item in self.events], [(ID_B, "Apple, Inc.")])
        await self.fleet.stop_report()
        self.farm.latest(PATH_A).feed(APPLE_LINE)
        self.assertEqual(len(self.events), 1)

    async def test_scan_on_connect(self) -> None:
        fleet = self._fleet(PATH_A, scan_on_connect=True)
        await fleet.initialize_all()
        self.assertEqual(self.farm.latest(PATH_A).writes[-1], at_commands.start_observer("-50"))
        self.assertTrue(fleet.get_device(ID_A).scanning)
        await fleet.shutdown()

    async def test_shutdown_cancels_timers_and_never_reconnects(self) -> None:
        fleet = self._fleet(PATH_A, PATH_B, base_delay=60.0)
        await fleet.initialize_all()
        self.farm.latest(PATH_A).drop()
        self.assertTrue(fleet.has_pending_reconnect(ID_A))

        await fleet.shutdown()
        await settle()
        self.assertFalse(fleet.has_pending_reconnect(ID_A))
        self.assertEqual(fleet.devices_info(), [])
        self.assertEqual(fleet.get_connection_stats(), ConnectionStats(total=2, connected=0, failed=2, reconnecting=0))
        self.assertEqual(self.farm.latest(PATH_B).close_calls, 1)
        self.assertEqual(self.farm.built(PATH_A), 1)


if __name__ == "__main__":
    unittest.main()
