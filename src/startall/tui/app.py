"""Textual front end for the startall dashboard."""
import asyncio
import atexit
import logging
import os
import signal
import time
from pathlib import Path
from typing import Optional

from rich.text import Text
from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.widget import Widget
from textual.widgets import Static

from .. import layout
from ..config import shortcut_for
from ..controller import DISPLAY_OPTIONS, Controller, Mode, Phase, SettingsMode, SettingsSection
from ..filters import new_line_count, visible_lines
from ..models.command import RunStatus
from ..models.pane import Direction, Pane, PaneNode
from ..output import truncate_ansi
from ..session import Session

logger = logging.getLogger(__name__)

REFRESH_DEBOUNCE = 0.016
SOURCE_STYLES = ["cyan", "magenta", "green", "yellow", "blue", "bright_red", "bright_cyan", "bright_magenta"]
STATUS_ICONS = {
    RunStatus.RUNNING: ("●", "green"),
    RunStatus.CRASHED: ("✖", "red"),
    RunStatus.EXITED: ("○", "yellow"),
    RunStatus.STOPPED: ("○", "grey50"),
}


def setup_logging():
    """Set up logging. The TUI owns the terminal, so logs only go to a file."""
    log_level = os.getenv('STARTALL_LOG_LEVEL', 'INFO').upper()
    log_file = os.getenv('STARTALL_LOG_FILE')

    handlers = []
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path))
    else:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )
    logger.info("Logging initialized")


def source_style(session: Session, name: str) -> str:
    names = session.command_names()
    index = names.index(name) if name in names else len(names)
    return SOURCE_STYLES[index % len(SOURCE_STYLES)]


class ControllerView(Static):
    """Base for widgets that render straight from the controller."""

    def __init__(self, controller: Controller, **kwargs):
        super().__init__(**kwargs)
        self.controller = controller


class SelectionView(ControllerView):
    """Pre-launch checklist with countdown."""

    def render(self) -> Text:
        controller = self.controller
        text = Text()
        text.append(
            f"Starting in {controller.countdown}s... "
            "[Enter start now, Space toggle, a all, ↑↓ navigate, o settings, q quit]\n\n",
            style="bold cyan",
        )
        for index, command in enumerate(controller.commands):
            focused = index == controller.cursor
            checkbox = "✓" if command.name in controller.selected else " "
            prefix = "▶" if focused else " "
            text.append(f"{prefix} [{checkbox}] {command.display_name}\n",
                        style="cyan" if focused else "")
        return text


class ProcessList(ControllerView):
    """Status of every visible command."""

    def render(self) -> Text:
        controller = self.controller
        supervisor = controller.session.supervisor
        text = Text("Processes [Space start/stop, r restart, i stdin, a/h scope/hide, : palette, o settings, q quit]\n",
                    style="bold cyan")
        for index, command in enumerate(controller.commands):
            state = supervisor.state(command.name)
            icon, color = STATUS_ICONS[state.status]
            focused = index == controller.cursor
            text.append(f"{'▶' if focused else ' '} ", style="cyan")
            text.append(f"{command.display_name:<25} ", style="cyan" if focused else "")
            text.append(icon, style=color)
            text.append(f" {state.status.value}")
            if state.pid:
                text.append(f" (PID {state.pid})", style="dim")
            elif state.exit_code is not None:
                text.append(f" (code {state.exit_code})", style="dim")
            key = shortcut_for(controller.session.config, command.name)
            if key:
                text.append(f" [{key}]", style="dim")
            text.append("\n")
        return text


class PaneView(ControllerView):
    """One leaf of the pane tree."""

    def __init__(self, controller: Controller, pane_id: str, **kwargs):
        super().__init__(controller, **kwargs)
        self.pane_id = pane_id

    def pane_title(self) -> str:
        pane = layout.find_by_id(self.controller.session.tree, self.pane_id)
        if pane is None:
            return ""
        parts = [pane.name or "Output"]
        if pane.process_scope:
            parts.append(",".join(sorted(pane.process_scope)))
        if pane.hidden:
            parts.append("-" + ",".join(sorted(pane.hidden)))
        if pane.text_filter:
            parts.append(f"/{pane.text_filter}")
        if pane.color_filter:
            parts.append(f"color:{pane.color_filter.value}")
        if pane.is_paused:
            waiting = new_line_count(self.controller.session.log, pane)
            parts.append(f"FROZEN ({waiting} new)" if waiting else "FROZEN")
        return " | ".join(parts)

    def render(self) -> Text:
        session = self.controller.session
        pane = layout.find_by_id(session.tree, self.pane_id)
        if pane is None:
            return Text("")

        height = max(self.size.height, 1)
        width = max(self.size.width, 1)
        self.controller.viewport[pane.id] = height

        config = session.config
        tag_sources = len(pane.process_scope) != 1
        text = Text(no_wrap=True, overflow="crop")
        for index, line in enumerate(visible_lines(session.log, pane, height)):
            prefix = Text()
            if config.show_line_numbers:
                prefix.append(f"{line.seq:>5} ", style="dim")
            if config.show_timestamps:
                stamp = time.strftime("%H:%M:%S", time.localtime(line.timestamp / 1000))
                prefix.append(f"{stamp} ", style="dim")
            if tag_sources:
                prefix.append(f"[{line.source}] ", style=source_style(session, line.source))
            body = Text.from_ansi(truncate_ansi(line.text, max(width - prefix.cell_len, 0)))
            if index:
                text.append("\n")
            text.append_text(prefix)
            text.append_text(body)
        return text


class PaneLayout(Container):
    """Builds nested containers mirroring the pane tree."""

    def __init__(self, controller: Controller, **kwargs):
        super().__init__(**kwargs)
        self.controller = controller

    def compose(self) -> ComposeResult:
        yield self._build(self.controller.session.tree)

    def _build(self, node: PaneNode, size: Optional[float] = None,
               parent: Optional[Direction] = None) -> Widget:
        if isinstance(node, Pane):
            widget: Widget = PaneView(self.controller, node.id, classes="pane")
        else:
            children = [self._build(child, child_size, node.direction)
                        for child, child_size in zip(node.children, node.sizes)]
            # Vertical splits put panes side by side
            container = Horizontal if node.direction is Direction.VERTICAL else Vertical
            widget = container(*children)

        widget.styles.width = "1fr"
        widget.styles.height = "1fr"
        if size is not None:
            if parent is Direction.VERTICAL:
                widget.styles.width = f"{size:.3f}fr"
            else:
                widget.styles.height = f"{size:.3f}fr"
        return widget


class SettingsView(ControllerView):
    """Include/ignore patterns, shortcuts and display toggles."""

    TITLES = {
        SettingsSection.INCLUDE: "Include patterns (a add, d delete; none = all)",
        SettingsSection.IGNORE: "Ignore patterns (a add, d delete)",
        SettingsSection.SHORTCUTS: "Shortcuts (Enter assign, d remove)",
        SettingsSection.DISPLAY: "Display (Space toggle)",
    }

    def render(self) -> Text:
        controller = self.controller
        config = controller.session.config
        text = Text("Settings [Tab section, ↑↓ navigate, Esc back]\n\n", style="bold cyan")
        for section in SettingsSection:
            active = section is controller.settings_section
            text.append(f"{self.TITLES[section]}\n", style="bold yellow" if active else "bold")
            items = controller.settings_items(section)
            if not items:
                text.append("    (none)\n", style="dim")
            for index, item in enumerate(items):
                focused = active and index == controller.settings_cursor
                label = item
                if section is SettingsSection.SHORTCUTS:
                    label = f"{item:<25} {shortcut_for(config, item) or '-'}"
                elif section is SettingsSection.DISPLAY:
                    name = dict(DISPLAY_OPTIONS)[item]
                    label = f"[{'x' if getattr(config, item) else ' '}] {name}"
                text.append(f"  {'▶' if focused else ' '} {label}\n", style="cyan" if focused else "")
            text.append("\n")
        return text


class Overlay(ControllerView):
    """Command palette, run picker and one-off output."""

    def render(self) -> Text:
        controller = self.controller
        if controller.mode is Mode.COMMAND_PALETTE:
            labels = [action.label for action in controller.palette_actions()]
            return self._menu(f"Command palette: {controller.input_buffer}█", labels)
        if controller.mode is Mode.RUN_PICKER:
            labels = [command.display_name for command in controller.picker_commands()]
            return self._menu(f"Run once: {controller.input_buffer}█", labels)
        if controller.mode is Mode.ONE_OFF and controller.one_off is not None:
            return self._one_off()
        return Text("")

    def _menu(self, header: str, labels) -> Text:
        text = Text(header + "\n\n", style="bold cyan")
        for index, label in enumerate(labels):
            focused = index == self.controller.list_cursor
            text.append(f"{'▶' if focused else ' '} {label}\n", style="cyan" if focused else "")
        if not labels:
            text.append("  (no matches)\n", style="dim")
        return text

    def _one_off(self) -> Text:
        run = self.controller.one_off
        height = max(self.size.height - 2, 1)
        width = max(self.size.width, 1)
        text = Text(f"{run.command.display_name}: {run.status.value}  [Esc close]\n\n", style="bold cyan")
        for line in list(run.lines)[-height:]:
            text.append_text(Text.from_ansi(truncate_ansi(line, width)))
            text.append("\n")
        return text


class StatusBar(ControllerView):
    """Prompt for the active text input, or hints and notices."""

    def render(self) -> Text:
        controller = self.controller
        prompt = controller.prompt()
        if prompt is not None:
            if controller.settings_mode is SettingsMode.ASSIGN_SHORTCUT and controller.phase is Phase.SETTINGS:
                return Text(prompt, style="bold yellow")
            return Text(f"{prompt}{controller.input_buffer}█", style="bold yellow")
        if controller.notice:
            return Text(controller.notice, style="bold red")
        text = Text()
        if controller.session.supervisor.streams_paused:
            text.append("STREAMS PAUSED  ", style="bold red")
        if controller.phase is Phase.RUNNING:
            text.append("/ filter  | - split  x close  Tab focus  p freeze  P freeze all  c color  e run once",
                        style="dim")
        return text


class StartAllApp(App):
    """Main startall TUI application."""

    CSS = """
    Screen {
        layers: base overlay;
    }

    #selection, #settings {
        padding: 1;
    }

    #running {
        height: 1fr;
    }

    #processes {
        height: auto;
        max-height: 14;
        border: solid #666666;
        padding: 0 1;
    }

    #panes {
        height: 1fr;
    }

    .pane {
        border: round #666666;
        border-title-color: #00ffff;
    }

    .pane.focused {
        border: round #00ffff;
    }

    #overlay {
        layer: overlay;
        width: 80%;
        height: 80%;
        margin: 2 4;
        padding: 1;
        background: #111111;
        border: thick #00ffff;
    }

    #status {
        dock: bottom;
        height: 1;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "request_quit", "Quit", priority=True),
    ]

    ENABLE_COMMAND_PALETTE = False

    def __init__(self, session: Session, **kwargs):
        super().__init__(**kwargs)
        self.session = session
        self.controller = Controller(session)
        self._layout_version = self.controller.layout_version
        self._refresh_pending = False
        self._quitting = False
        session.supervisor.on_change = self.schedule_refresh

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield SelectionView(self.controller, id="selection")
        with Vertical(id="running"):
            yield ProcessList(self.controller, id="processes")
            yield PaneLayout(self.controller, id="panes")
        yield SettingsView(self.controller, id="settings")
        yield Overlay(self.controller, id="overlay")
        yield StatusBar(self.controller, id="status")

    async def on_mount(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGTERM, signal.SIGHUP, signal.SIGINT):
            loop.add_signal_handler(signum, self._on_signal)
        self.set_interval(1.0, self._tick)
        await self.sync()

    def _on_signal(self) -> None:
        logger.info("Received termination signal")
        self.controller.quit()
        self._close()

    async def _tick(self) -> None:
        self.controller.tick()
        await self.sync()

    async def action_request_quit(self) -> None:
        self.controller.handle_key("ctrl+c")
        await self.sync()

    async def on_key(self, event: events.Key) -> None:
        event.stop()
        event.prevent_default()
        self.controller.handle_key(event.key, event.character)
        await self.sync()

    def schedule_refresh(self) -> None:
        """Coalesce bursts of output into one redraw."""
        if self._refresh_pending or self._quitting:
            return
        self._refresh_pending = True
        self.set_timer(REFRESH_DEBOUNCE, self._flush_refresh)

    async def _flush_refresh(self) -> None:
        self._refresh_pending = False
        await self.sync()

    async def sync(self) -> None:
        """Bring every widget in line with the controller."""
        controller = self.controller
        if controller.quit_requested:
            self._close()
            return

        self.query_one("#selection").display = controller.phase is Phase.SELECTING
        self.query_one("#running").display = controller.phase is Phase.RUNNING
        self.query_one("#settings").display = controller.phase is Phase.SETTINGS
        self.query_one("#overlay").display = (
            controller.phase is Phase.RUNNING
            and controller.mode in (Mode.COMMAND_PALETTE, Mode.RUN_PICKER, Mode.ONE_OFF)
        )

        if controller.layout_version != self._layout_version:
            self._layout_version = controller.layout_version
            await self.query_one(PaneLayout).recompose()

        for view in self.query(PaneView):
            view.set_class(view.pane_id == controller.focused_pane, "focused")
            view.border_title = view.pane_title()
        for widget in self.query(ControllerView):
            widget.refresh(layout=True)

    def _close(self) -> None:
        if not self._quitting:
            self._quitting = True
            self.exit(self.controller.exit_message)


def run_app(session: Session) -> Optional[str]:
    """Run the dashboard until quit. Returns the exit message, if any."""
    atexit.register(session.supervisor.shutdown_all)
    app = StartAllApp(session)
    try:
        return app.run()
    finally:
        session.supervisor.shutdown_all()
