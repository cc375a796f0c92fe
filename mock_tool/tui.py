from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, VerticalScroll
from textual.widgets import Button, DataTable, Footer, Header, Input, Label, RichLog, Switch
import asyncio

from rich.markup import escape

from .config import settings
from .proxy_core import ProxyServer


class MockConsole(App):
    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-columns: 2fr 3fr;
        grid-rows: 1fr;
    }

    .sidebar {
        height: 100%;
        overflow-y: auto;
    }

    .main {
        height: 100%;
        padding: 1;
    }

    .control-box {
        background: $panel;
        border: solid $accent;
        padding: 1 2;
        margin: 1;
        height: auto;
    }

    .box-title {
        color: $accent;
        text-style: bold;
        margin-bottom: 1;
    }

    Input {
        width: 100%;
        margin-bottom: 1;
    }

    Horizontal {
        margin-bottom: 1;
        height: auto;
    }

    Switch {
        margin-right: 1;
    }

    .status-on {
        color: $success;
        text-style: bold;
    }

    .status-off {
        color: $error;
        text-style: bold;
    }

    #rules {
        height: 1fr;
        border: solid $accent;
    }

    #logs {
        height: 2fr;
        border: solid $accent;
    }
    """

    BINDINGS = [("r", "reload_rules", "Reload rules")]

    def __init__(self, engine, rules_file=None, host=None, port=None):
        super().__init__()
        self.engine = engine
        self.rules_file = rules_file or engine.rules_file
        self.host = host or settings.proxy_host
        self.port = port or settings.proxy_port
        self.proxy_server = None
        self.proxy_worker = None
        self.log_queue = asyncio.Queue()

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        with VerticalScroll(classes="sidebar"):
            with Container(classes="control-box"):
                yield Label("Proxy", classes="box-title")
                with Horizontal():
                    yield Switch(id="toggle_proxy")
                    yield Label(" OFFLINE", id="status_label", classes="status-off")
                yield Label("Listen Port")
                yield Input(value=str(self.port), id="port", type="integer")

            with Container(classes="control-box"):
                yield Label("Mocking", classes="box-title")
                with Horizontal():
                    yield Switch(value=not self.engine.disabled, id="toggle_mock")
                    yield Label(" Answer matched requests with mocks")
                with Horizontal():
                    yield Switch(value=self.engine.log, id="toggle_log")
                    yield Label(" Log mocked exchanges")
                yield Label("Rules file")
                yield Input(value=self.rules_file or "", id="rules_file")
                yield Button("Reload rules", id="reload", variant="primary")

        with Container(classes="main"):
            yield Label("Rules")
            yield DataTable(id="rules", cursor_type="row")
            yield Label("Traffic")
            yield RichLog(id="logs", markup=True, wrap=True)

        yield Footer()

    async def on_mount(self):
        table = self.query_one("#rules", DataTable)
        table.add_columns("Method", "URL", "Status", "Delay", "Times", "State")
        self.engine.mock_logger.log_queue = self.log_queue
        self.refresh_rules()
        self.set_interval(1.0, self.refresh_rules)
        self.log_worker = asyncio.create_task(self.process_logs())

    async def process_logs(self):
        log_widget = self.query_one("#logs", RichLog)
        while True:
            msg = await self.log_queue.get()
            log_widget.write(msg)

    def refresh_rules(self):
        table = self.query_one("#rules", DataTable)
        table.clear()
        for item in self.engine.rules:
            times = "∞" if item.times is None else str(item.times)
            if item.disable:
                state = "disabled"
            elif item.times == 0:
                state = "exhausted"
            elif item.proxy:
                state = "forward"
            else:
                state = "active"
            table.add_row(item.method.upper(), item.url_text, str(item.status), f"{item.delay}ms", times, state)

    def action_reload_rules(self):
        path = self.query_one("#rules_file", Input).value or None
        self.engine.load_rules(path)
        self.rules_file = path
        self.log_queue.put_nowait(escape(f"Loaded {len(self.engine)} rules from {path}"))
        self.refresh_rules()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "reload":
            self.action_reload_rules()

    async def on_switch_changed(self, event: Switch.Changed) -> None:
        if event.switch.id == "toggle_mock":
            if event.value:
                self.engine.enable()
            else:
                self.engine.disable()
        elif event.switch.id == "toggle_log":
            if event.value:
                self.engine.enable_log()
            else:
                self.engine.disable_log()
        elif event.switch.id == "toggle_proxy":
            status_label = self.query_one("#status_label", Label)
            if event.value:
                status_label.update(" ONLINE")
                status_label.remove_class("status-off")
                status_label.add_class("status-on")
                await self.start_proxy()
            else:
                status_label.update(" OFFLINE")
                status_label.remove_class("status-on")
                status_label.add_class("status-off")
                self.stop_proxy()

    async def start_proxy(self):
        port = int(self.query_one("#port", Input).value or self.port)
        self.proxy_server = ProxyServer(self.engine, host=self.host, port=port, cert_dir=settings.cert_dir)
        self.proxy_server.log_queue = self.log_queue
        self.proxy_worker = asyncio.create_task(self.proxy_server.start())

    def stop_proxy(self):
        if self.proxy_server:
            self.proxy_server.stop()
        if self.proxy_worker:
            self.proxy_worker.cancel()

        self.log_queue.put_nowait("Proxy stopped")
