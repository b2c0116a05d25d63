"""Session context: all mutable dashboard state in one place."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List

from . import layout
from .config import Config, save_config
from .models.command import Command
from .models.pane import Pane, PaneNode
from .output import OutputLog
from .supervisor import ProcessSupervisor, Spawner, spawn_command

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One dashboard session. Passed explicitly to everything that needs it."""
    commands: List[Command]
    config: Config
    config_path: Path
    log: OutputLog
    supervisor: ProcessSupervisor
    tree: PaneNode

    @classmethod
    def create(cls, commands: List[Command], config: Config, config_path: Path,
               spawner: Spawner = spawn_command) -> "Session":
        log = OutputLog(config.max_log_lines)
        supervisor = ProcessSupervisor(
            commands,
            log,
            spawner=spawner,
            restart_delay=config.restart_delay_ms / 1000,
            kill_grace=config.kill_grace_ms / 1000,
        )
        tree = layout.deserialize(config.pane_layout) if config.pane_layout else Pane()
        return cls(commands, config, Path(config_path), log, supervisor, tree)

    def command_names(self) -> List[str]:
        return [command.name for command in self.commands]

    def save(self) -> None:
        """Persist config, including the current pane layout."""
        self.config.pane_layout = layout.serialize(self.tree)
        save_config(self.config, self.config_path)
