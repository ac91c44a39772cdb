from __future__ import annotations

from datetime import datetime
from typing import Any

from common.reporting import PanelPrinter, Reporter, TableBuilder, show_table
from config.defaults import DEVICE_ID_KEY, MANUFACTURER_KEY, MESSAGE_KEY, SERIAL_PATH_KEY
from protocol.command_ids import TYPE_DEVICE, TYPE_ERROR, TYPE_HEARTBEAT, TYPE_STATUS
from protocol.envelope import CommandResponse

TYPE_LABELS = {
    TYPE_STATUS: "status",
    TYPE_ERROR: "error",
    TYPE_DEVICE: "device",
    TYPE_HEARTBEAT: "heartbeat",
}


class ResponseRenderer:
    def __init__(self, reporter: Reporter, paneler: PanelPrinter | None, table_builder: TableBuilder | None) -> None:
        self.reporter = reporter
        self.paneler = paneler
        self.table_builder = table_builder

    def response(self, response: CommandResponse) -> None:
        if response.type_code == TYPE_ERROR:
            self.error(response.data)
            return
        stats = response.data.get("stats")
        if isinstance(stats, dict):
            self.stats(stats, run=bool(response.data.get("run")))
            return
        lines = [str(response.data.get(MESSAGE_KEY, "ok"))]
        for key, value in response.data.items():
            if key == MESSAGE_KEY:
                continue
            lines.append(f"{key}: {_format_value(value)}")
        self._panel("\n".join(lines), "Gateway", "green")

    def error(self, data: dict[str, Any]) -> None:
        lines = [f"[{data.get('code', 'ERROR')}] {data.get(MESSAGE_KEY, '')}"]
        if data.get("suggestion"):
            lines.append(f"hint: {data['suggestion']}")
        if data.get("context"):
            lines.append(f"context: {_format_value(data['context'])}")
        self._panel("\n".join(lines), "Error", "red")

    def stats(self, stats: dict[str, Any], *, run: bool) -> None:
        keys = ("total", "connected", "reconnecting", "failed")
        show_table(
            self.reporter,
            self.paneler,
            self.table_builder,
            title=f"Gateway {'running' if run else 'idle'}",
            columns=[key.capitalize() for key in keys],
            rows=[[str(stats.get(key, "-")) for key in keys]],
            style="cyan",
        )

    def event(self, event: CommandResponse) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        label = TYPE_LABELS.get(event.type_code, str(event.type_code))
        if event.type_code == TYPE_DEVICE:
            source = ""
            if DEVICE_ID_KEY in event.data:
                source = f" ({event.data[DEVICE_ID_KEY]} @ {event.data.get(SERIAL_PATH_KEY, '?')})"
            self.reporter(f"{stamp} {label:<9} {event.data.get(MANUFACTURER_KEY, '?')}{source}")
            return
        if event.type_code == TYPE_HEARTBEAT:
            self.reporter(f"{stamp} {label:<9} run={event.data.get('run')}")
            return
        self.reporter(f"{stamp} {label:<9} {_format_value(event.data)}")

    def _panel(self, text: str, title: str, style: str) -> None:
        if self.paneler is None:
            self.reporter(f"{title}: {text}")
            return
        self.paneler(text, title, style)


def _format_value(value: Any) -> str:
    if isinstance(value, dict):
        return ", ".join(f"{key}={item}" for key, item in value.items())
    return str(value)
