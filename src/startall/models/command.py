"""Command and run state models for startall."""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RunStatus(str, Enum):
    """Lifecycle status of a supervised command."""

    STOPPED = "stopped"
    RUNNING = "running"
    CRASHED = "crashed"
    EXITED = "exited"


class Command(BaseModel):
    """A runnable script from the project manifest."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Script name (unique key)")
    display_name: str = Field(..., description="Label shown in the dashboard")
    invocation: str = Field(..., description="Shell command line used to run it")


class RunState(BaseModel):
    """Mutable run record for a command, owned by the supervisor."""

    status: RunStatus = Field(RunStatus.STOPPED, description="Current lifecycle status")
    pid: Optional[int] = Field(None, description="Process ID while running")
    exit_code: Optional[int] = Field(None, description="Exit code of the last run")
