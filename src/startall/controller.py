"""Interaction state machine.

The controller turns key presses into changes on the session: the pane tree,
the supervisor and the config. It knows nothing about rendering; the Textual
app reads its state after every event and draws it.

Phases: SELECTING (countdown and checklist) -> RUNNING, plus SETTINGS, which
returns to whichever phase opened it. RUNNING has sub-modes. Capture modes
(text filter, pane name, stdin, palette and picker queries, settings inputs)
receive every printable key, so shortcuts can never fire while typing.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from . import layout
from .config import assign_shortcut, remove_shortcut, visible_commands
from .filters import max_scroll
from .models.command import Command
from .models.pane import ColorClass, Direction, Pane
from .session import Session
from .supervisor import OneOffRun

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = 20
RESIZE_STEP = 0.25

COLOR_CYCLE: List[Optional[ColorClass]] = [None] + list(ColorClass)

DISPLAY_OPTIONS = [
    ("show_line_numbers", "Line numbers"),
    ("show_timestamps", "Timestamps"),
]

SUBMIT = "submit"
CANCEL = "cancel"


class Phase(str, Enum):
    SELECTING = "selecting"
    RUNNING = "running"
    SETTINGS = "settings"


class Mode(str, Enum):
    """Sub-modes of the running phase."""
    NORMAL = "normal"
    TEXT_FILTER = "text_filter"
    PANE_NAMING = "pane_naming"
    STDIN = "stdin"
    COMMAND_PALETTE = "command_palette"
    RUN_PICKER = "run_picker"
    ONE_OFF = "one_off"


class SettingsSection(str, Enum):
    INCLUDE = "include"
    IGNORE = "ignore"
    SHORTCUTS = "shortcuts"
    DISPLAY = "display"


class SettingsMode(str, Enum):
    BROWSE = "browse"
    ADD_PATTERN = "add_pattern"
    ASSIGN_SHORTCUT = "assign_shortcut"


@dataclass
class PaletteAction:
    label: str
    run: Callable[[], None]


def _printable(char: Optional[str]) -> bool:
    return char is not None and len(char) == 1 and char.isprintable()


class Controller:
    """Dispatches input events against the current phase and mode."""

    def __init__(self, session: Session):
        self.session = session
        self.phase = Phase.SELECTING
        self.mode = Mode.NORMAL
        self.return_phase = Phase.SELECTING
        self.settings_section = SettingsSection.INCLUDE
        self.settings_mode = SettingsMode.BROWSE
        self.settings_cursor = 0

        self.countdown = session.config.countdown_seconds
        known = set(session.command_names())
        self.selected: Set[str] = {name for name in session.config.default_selection if name in known}
        self.cursor = 0
        self.focused_pane = layout.all_ids(session.tree)[0]
        self.input_buffer = ""
        self.list_cursor = 0
        self.one_off: Optional[OneOffRun] = None
        self.global_paused = False
        self._globally_frozen: Set[str] = set()
        self.viewport: Dict[str, int] = {}

        self.notice = ""
        self.exit_message: Optional[str] = None
        self.quit_requested = False
        self.layout_version = 0

        self._running_handlers = {
            Mode.NORMAL: self._normal_key,
            Mode.TEXT_FILTER: self._text_filter_key,
            Mode.PANE_NAMING: self._pane_naming_key,
            Mode.STDIN: self._stdin_key,
            Mode.COMMAND_PALETTE: self._palette_key,
            Mode.RUN_PICKER: self._picker_key,
            Mode.ONE_OFF: self._one_off_key,
        }
        self._selecting_bindings = {
            "up": lambda: self.move_cursor(-1),
            "down": lambda: self.move_cursor(1),
            "space": self.toggle_selected,
            "a": self.toggle_all,
            "enter": self.launch,
            "o": self.open_settings,
            "q": self.quit,
        }
        self._normal_bindings = {
            "q": self.quit,
            "up": lambda: self.move_cursor(-1),
            "down": lambda: self.move_cursor(1),
            "space": lambda: self._with_selected(self.session.supervisor.toggle),
            "r": lambda: self._with_selected(self.session.supervisor.restart),
            "R": self.session.supervisor.restart_all,
            "i": self.begin_stdin,
            "/": self.begin_text_filter,
            "n": self.begin_pane_naming,
            "|": lambda: self.split_pane(Direction.VERTICAL),
            "-": lambda: self.split_pane(Direction.HORIZONTAL),
            "x": self.close_pane,
            "tab": lambda: self.focus_pane(1),
            "shift+tab": lambda: self.focus_pane(-1),
            "a": self.toggle_scope,
            "h": self.toggle_hidden,
            "c": self.cycle_color,
            "p": self.toggle_pause,
            "P": self.toggle_global_pause,
            "pageup": lambda: self.scroll(self._page()),
            "pagedown": lambda: self.scroll(-self._page()),
            "[": lambda: self.resize_pane(-RESIZE_STEP),
            "]": lambda: self.resize_pane(RESIZE_STEP),
            "escape": self.clear_pane_view,
            "o": self.open_settings,
            ":": self.open_palette,
            "e": self.open_run_picker,
            "L": self.clear_output,
        }

    # Derived state

    @property
    def commands(self) -> List[Command]:
        """Commands shown in lists, after include/ignore patterns."""
        return visible_commands(self.session.commands, self.session.config)

    @property
    def selected_command(self) -> Optional[Command]:
        commands = self.commands
        if not commands:
            return None
        return commands[min(self.cursor, len(commands) - 1)]

    @property
    def pane(self) -> Pane:
        pane = layout.find_by_id(self.session.tree, self.focused_pane)
        if pane is None:
            self.focused_pane = layout.all_ids(self.session.tree)[0]
            pane = layout.find_by_id(self.session.tree, self.focused_pane)
        return pane

    def prompt(self) -> Optional[str]:
        """Label of the active text input, if any."""
        if self.phase is Phase.SETTINGS:
            if self.settings_mode is SettingsMode.ADD_PATTERN:
                return f"Add {self.settings_section.value} pattern: "
            if self.settings_mode is SettingsMode.ASSIGN_SHORTCUT:
                return "Press a key for this command (Esc to cancel)"
            return None
        if self.phase is not Phase.RUNNING:
            return None
        if self.mode is Mode.TEXT_FILTER:
            return "Filter: "
        if self.mode is Mode.PANE_NAMING:
            return "Pane name: "
        if self.mode is Mode.STDIN:
            command = self.selected_command
            return f"stdin ({command.name if command else '?'}): "
        return None

    # Dispatch

    def handle_key(self, key: str, char: Optional[str] = None) -> None:
        """Route one key press. `key` is the key name, `char` the printable character."""
        self.notice = ""
        if key == "ctrl+c":
            self.quit()
        elif self.phase is Phase.SETTINGS:
            self._settings_key(key, char)
        elif self.phase is Phase.SELECTING:
            action = self._lookup(self._selecting_bindings, key, char)
            if action:
                action()
        else:
            self._running_handlers[self.mode](key, char)

    @staticmethod
    def _lookup(bindings: Dict[str, Callable[[], None]], key: str, char: Optional[str]):
        return bindings.get(key) or (bindings.get(char) if char else None)

    def _edit_buffer(self, key: str, char: Optional[str]) -> Optional[str]:
        if key == "enter":
            return SUBMIT
        if key == "escape":
            return CANCEL
        if key == "backspace":
            self.input_buffer = self.input_buffer[:-1]
        elif _printable(char):
            self.input_buffer += char
        return None

    # Selecting phase

    def tick(self) -> None:
        """Advance the launch countdown by one second."""
        if self.phase is not Phase.SELECTING:
            return
        self.countdown -= 1
        if self.countdown <= 0:
            self.launch()

    def reset_countdown(self) -> None:
        self.countdown = self.session.config.countdown_seconds

    def move_cursor(self, delta: int) -> None:
        count = len(self.commands)
        if count:
            self.cursor = max(0, min(count - 1, self.cursor + delta))

    def toggle_selected(self) -> None:
        command = self.selected_command
        if command is None:
            return
        self.selected ^= {command.name}
        self.reset_countdown()

    def toggle_all(self) -> None:
        names = {command.name for command in self.commands}
        if names <= self.selected:
            self.selected -= names
        else:
            self.selected |= names
        self.reset_countdown()

    def launch(self) -> None:
        """Start the selected commands. There is no way back to selection."""
        if self.phase is not Phase.SELECTING:
            return
        names = [command.name for command in self.commands if command.name in self.selected]
        if not names:
            self.exit_message = "No scripts selected."
            self.quit()
            return

        self.session.config.default_selection = names
        self.session.save()
        self.phase = Phase.RUNNING
        self.mode = Mode.NORMAL
        self.cursor = 0
        logger.info(f"Launching {', '.join(names)}")
        self.session.supervisor.start_all(names)

    # Running phase: normal mode

    def _normal_key(self, key: str, char: Optional[str]) -> None:
        action = self._lookup(self._normal_bindings, key, char)
        if action:
            action()
        elif _printable(char):
            self.run_shortcut(char)

    def run_shortcut(self, char: str) -> None:
        """Run the command bound to `char`, looked up in the full command set."""
        name = self.session.config.shortcuts.get(char)
        if name is None or name not in self.session.supervisor.commands:
            return
        self.run_once(name)

    def run_once(self, name: str) -> None:
        if self.one_off is not None:
            self.one_off.cancel()
        self.one_off = self.session.supervisor.execute_once(name)
        if self.one_off is not None:
            self.mode = Mode.ONE_OFF

    def _with_selected(self, action: Callable[[str], object]) -> None:
        command = self.selected_command
        if command is not None:
            action(command.name)

    def quit(self) -> None:
        """Request exit and kill every process tree."""
        self.quit_requested = True
        if self.one_off is not None:
            self.one_off.cancel()
        self.session.supervisor.shutdown_all()

    # Panes

    def _layout_changed(self) -> None:
        self.layout_version += 1
        self.session.save()

    def split_pane(self, direction: Direction) -> None:
        self.session.tree = layout.split(self.session.tree, self.focused_pane, direction)
        # The new pane directly follows the original in pre-order
        self.focused_pane = layout.neighbor(self.session.tree, self.focused_pane, 1)
        if self.global_paused:
            self._freeze_globally(self.pane)
        self._layout_changed()

    def close_pane(self) -> None:
        ids = layout.all_ids(self.session.tree)
        if len(ids) <= 1:
            self.notice = "Cannot close the last pane"
            return
        index = ids.index(self.focused_pane)
        self.session.tree = layout.close(self.session.tree, self.focused_pane)
        self.viewport.pop(self.focused_pane, None)
        remaining = layout.all_ids(self.session.tree)
        self.focused_pane = remaining[min(index, len(remaining) - 1)]
        self._layout_changed()

    def focus_pane(self, offset: int) -> None:
        self.focused_pane = layout.neighbor(self.session.tree, self.focused_pane, offset)

    def resize_pane(self, delta: float) -> None:
        self.session.tree = layout.resize(self.session.tree, self.focused_pane, delta)
        self._layout_changed()

    def toggle_scope(self) -> None:
        """Add or remove the selected command from the focused pane's scope."""
        command = self.selected_command
        if command is not None:
            self.pane.process_scope ^= {command.name}
            self.session.save()

    def toggle_hidden(self) -> None:
        command = self.selected_command
        if command is not None:
            self.pane.hidden ^= {command.name}
            self.session.save()

    def cycle_color(self) -> None:
        pane = self.pane
        index = COLOR_CYCLE.index(pane.color_filter)
        pane.color_filter = COLOR_CYCLE[(index + 1) % len(COLOR_CYCLE)]
        self.session.save()

    # Freeze and scroll

    def freeze(self, pane: Pane) -> None:
        if not pane.is_paused:
            pane.is_paused = True
            pane.frozen_at = self.session.log.last_seq
            pane.scroll_offset = 0

    def unfreeze(self, pane: Pane) -> None:
        pane.is_paused = False
        pane.scroll_offset = 0

    def toggle_pause(self) -> None:
        pane = self.pane
        self._globally_frozen.discard(pane.id)
        if pane.is_paused:
            self.unfreeze(pane)
        else:
            self.freeze(pane)

    def toggle_global_pause(self) -> None:
        """Freeze every pane and stop reading child output, or undo both."""
        self.global_paused = not self.global_paused
        if self.global_paused:
            for pane in layout.iter_panes(self.session.tree):
                self._freeze_globally(pane)
            self.session.supervisor.pause_streams()
        else:
            # Panes frozen by hand before the global pause stay frozen
            for pane in layout.iter_panes(self.session.tree):
                if pane.id in self._globally_frozen:
                    self.unfreeze(pane)
            self._globally_frozen.clear()
            self.session.supervisor.resume_streams()

    def _freeze_globally(self, pane: Pane) -> None:
        if not pane.is_paused:
            self.freeze(pane)
            self._globally_frozen.add(pane.id)

    def _page(self) -> int:
        return max(self.viewport.get(self.focused_pane, DEFAULT_VIEWPORT) - 1, 1)

    def scroll(self, delta: int) -> None:
        """Scroll the focused pane; positive is up. Scrolling up freezes it."""
        pane = self.pane
        if delta > 0:
            self.freeze(pane)
        elif not pane.is_paused:
            return
        height = self.viewport.get(pane.id, DEFAULT_VIEWPORT)
        limit = max_scroll(self.session.log, pane, height)
        pane.scroll_offset = max(0, min(limit, pane.scroll_offset + delta))
        if pane.scroll_offset == 0 and delta < 0 and not pane.text_filter and not self.global_paused:
            self.unfreeze(pane)

    def clear_pane_view(self) -> None:
        """Drop the text filter and scroll position and resume following output."""
        pane = self.pane
        pane.text_filter = ""
        if not self.global_paused:
            self.unfreeze(pane)
        else:
            pane.scroll_offset = 0
        self.session.save()

    def clear_output(self) -> None:
        self.session.log.clear()

    # Capture modes

    def begin_text_filter(self) -> None:
        self.mode = Mode.TEXT_FILTER
        self.input_buffer = self.pane.text_filter
        self.freeze(self.pane)

    def _text_filter_key(self, key: str, char: Optional[str]) -> None:
        result = self._edit_buffer(key, char)
        pane = self.pane
        if result == CANCEL:
            self.mode = Mode.NORMAL
            self.clear_pane_view()
            return
        pane.text_filter = self.input_buffer
        if result == SUBMIT:
            self.mode = Mode.NORMAL
            if not pane.text_filter and not self.global_paused:
                self.unfreeze(pane)
            self.session.save()

    def begin_pane_naming(self) -> None:
        self.mode = Mode.PANE_NAMING
        self.input_buffer = self.pane.name

    def _pane_naming_key(self, key: str, char: Optional[str]) -> None:
        result = self._edit_buffer(key, char)
        if result == SUBMIT:
            self.pane.name = self.input_buffer.strip()
            self.session.save()
        if result is not None:
            self.mode = Mode.NORMAL

    def begin_stdin(self) -> None:
        command = self.selected_command
        if command is None or not self.session.supervisor.is_running(command.name):
            self.notice = "Process is not running"
            return
        self.mode = Mode.STDIN
        self.input_buffer = ""

    def _stdin_key(self, key: str, char: Optional[str]) -> None:
        result = self._edit_buffer(key, char)
        if result == SUBMIT:
            command = self.selected_command
            if command is not None:
                self.session.supervisor.send_input(command.name, self.input_buffer)
        if result is not None:
            self.mode = Mode.NORMAL
            self.input_buffer = ""

    # Palette, picker and one-off overlay

    def palette_actions(self) -> List[PaletteAction]:
        """Palette entries matching the current query."""
        supervisor = self.session.supervisor
        actions = [
            PaletteAction("Split pane vertically", lambda: self.split_pane(Direction.VERTICAL)),
            PaletteAction("Split pane horizontally", lambda: self.split_pane(Direction.HORIZONTAL)),
            PaletteAction("Close pane", self.close_pane),
            PaletteAction("Resume all panes" if self.global_paused else "Freeze all panes",
                          self.toggle_global_pause),
            PaletteAction("Start all", lambda: supervisor.start_all(c.name for c in self.commands)),
            PaletteAction("Stop all", supervisor.stop_all),
            PaletteAction("Restart all", supervisor.restart_all),
            PaletteAction("Clear output", self.clear_output),
            PaletteAction("Toggle line numbers", lambda: self.toggle_display("show_line_numbers")),
            PaletteAction("Toggle timestamps", lambda: self.toggle_display("show_timestamps")),
            PaletteAction("Run command once", self.open_run_picker),
            PaletteAction("Settings", self.open_settings),
            PaletteAction("Quit", self.quit),
        ]
        query = self.input_buffer.lower()
        return [action for action in actions if query in action.label.lower()]

    def open_palette(self) -> None:
        self.mode = Mode.COMMAND_PALETTE
        self.input_buffer = ""
        self.list_cursor = 0

    def _palette_key(self, key: str, char: Optional[str]) -> None:
        actions = self.palette_actions()
        if self._list_navigation(key, len(actions)):
            return
        result = self._edit_buffer(key, char)
        if result == SUBMIT:
            self.mode = Mode.NORMAL
            if actions:
                actions[min(self.list_cursor, len(actions) - 1)].run()
        elif result == CANCEL:
            self.mode = Mode.NORMAL
        else:
            self.list_cursor = 0

    def picker_commands(self) -> List[Command]:
        """All commands, including hidden ones, matching the picker query."""
        query = self.input_buffer.lower()
        return [command for command in self.session.commands if query in command.name.lower()]

    def open_run_picker(self) -> None:
        self.mode = Mode.RUN_PICKER
        self.input_buffer = ""
        self.list_cursor = 0

    def _picker_key(self, key: str, char: Optional[str]) -> None:
        commands = self.picker_commands()
        if self._list_navigation(key, len(commands)):
            return
        result = self._edit_buffer(key, char)
        if result == SUBMIT:
            self.mode = Mode.NORMAL
            if commands:
                self.run_once(commands[min(self.list_cursor, len(commands) - 1)].name)
        elif result == CANCEL:
            self.mode = Mode.NORMAL
        else:
            self.list_cursor = 0

    def _list_navigation(self, key: str, count: int) -> bool:
        if key not in ("up", "down"):
            return False
        if count:
            step = -1 if key == "up" else 1
            self.list_cursor = max(0, min(count - 1, self.list_cursor + step))
        return True

    def _one_off_key(self, key: str, char: Optional[str]) -> None:
        if key in ("escape", "q", "enter"):
            self.close_one_off()

    def close_one_off(self) -> None:
        """Close the overlay. This kills the run if it is still going."""
        if self.one_off is not None:
            self.one_off.cancel()
            self.one_off = None
        self.mode = Mode.NORMAL

    # Settings

    def open_settings(self) -> None:
        self.return_phase = self.phase
        self.phase = Phase.SETTINGS
        self.mode = Mode.NORMAL
        self.settings_section = SettingsSection.INCLUDE
        self.settings_mode = SettingsMode.BROWSE
        self.settings_cursor = 0

    def close_settings(self) -> None:
        self.phase = self.return_phase
        # Patterns may have hidden the command under the cursor
        self.cursor = max(0, min(self.cursor, len(self.commands) - 1))

    def settings_items(self, section: Optional[SettingsSection] = None) -> List[str]:
        config = self.session.config
        section = section or self.settings_section
        if section is SettingsSection.INCLUDE:
            return list(config.include or [])
        if section is SettingsSection.IGNORE:
            return list(config.ignore)
        if section is SettingsSection.SHORTCUTS:
            return self.session.command_names()
        return [attr for attr, _ in DISPLAY_OPTIONS]

    def toggle_display(self, attr: str) -> None:
        config = self.session.config
        setattr(config, attr, not getattr(config, attr))
        self.session.save()

    def _settings_key(self, key: str, char: Optional[str]) -> None:
        if self.settings_mode is SettingsMode.ADD_PATTERN:
            self._add_pattern_key(key, char)
        elif self.settings_mode is SettingsMode.ASSIGN_SHORTCUT:
            self._assign_shortcut_key(key, char)
        else:
            self._settings_browse_key(key, char)

    def _settings_browse_key(self, key: str, char: Optional[str]) -> None:
        sections = list(SettingsSection)
        section = self.settings_section
        items = self.settings_items()

        if key == "escape" or char == "q":
            self.close_settings()
        elif key in ("tab", "shift+tab"):
            step = 1 if key == "tab" else -1
            self.settings_section = sections[(sections.index(section) + step) % len(sections)]
            self.settings_cursor = 0
        elif key in ("up", "down"):
            step = -1 if key == "up" else 1
            self.settings_cursor = max(0, min(len(items) - 1, self.settings_cursor + step))
        elif section in (SettingsSection.INCLUDE, SettingsSection.IGNORE):
            if char == "a":
                self.settings_mode = SettingsMode.ADD_PATTERN
                self.input_buffer = ""
            elif (char == "d" or key == "delete") and items:
                self._remove_pattern(items[min(self.settings_cursor, len(items) - 1)])
        elif section is SettingsSection.SHORTCUTS and items:
            name = items[min(self.settings_cursor, len(items) - 1)]
            if key == "enter":
                self.settings_mode = SettingsMode.ASSIGN_SHORTCUT
            elif char == "d" or key == "delete":
                remove_shortcut(self.session.config, name)
                self.session.save()
        elif section is SettingsSection.DISPLAY and key in ("space", "enter") and items:
            self.toggle_display(items[min(self.settings_cursor, len(items) - 1)])

    def _remove_pattern(self, pattern: str) -> None:
        config = self.session.config
        if self.settings_section is SettingsSection.INCLUDE:
            remaining = [p for p in config.include or [] if p != pattern]
            # An empty include list would hide everything; absence means "all"
            config.include = remaining or None
        else:
            config.ignore = [p for p in config.ignore if p != pattern]
        self.settings_cursor = max(0, min(self.settings_cursor, len(self.settings_items()) - 1))
        self.session.save()

    def _add_pattern_key(self, key: str, char: Optional[str]) -> None:
        result = self._edit_buffer(key, char)
        if result is None:
            return
        pattern = self.input_buffer.strip()
        if result == SUBMIT and pattern:
            config = self.session.config
            if self.settings_section is SettingsSection.INCLUDE:
                config.include = (config.include or []) + [pattern]
            else:
                config.ignore = config.ignore + [pattern]
            self.session.save()
        self.settings_mode = SettingsMode.BROWSE
        self.input_buffer = ""

    def _assign_shortcut_key(self, key: str, char: Optional[str]) -> None:
        if key == "escape":
            self.settings_mode = SettingsMode.BROWSE
            return
        if not _printable(char) or char == " ":
            return
        if char in self._normal_bindings:
            self.notice = f"'{char}' is a built-in key"
            return
        items = self.settings_items(SettingsSection.SHORTCUTS)
        name = items[min(self.settings_cursor, len(items) - 1)]
        assign_shortcut(self.session.config, char, name)
        self.session.save()
        self.settings_mode = SettingsMode.BROWSE
