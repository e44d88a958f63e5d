"""Test session data structures persisted by the session state machine."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SessionStatus = Literal["initializing", "running", "completed", "failed"]
TargetStatus = Literal["pending", "running", "completed", "failed", "skipped"]

TERMINAL_TARGET_STATUSES = ("completed", "failed", "skipped")
RESUMABLE_TARGET_STATUSES = ("pending", "running")


class _SnapshotModel(BaseModel):
    """Snapshot documents use camelCase keys on disk."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TargetDescriptor(_SnapshotModel):
    """What to test: a menu item or a known route."""
    id: str
    text: str
    level: int = Field(default=1, ge=1)
    url: Optional[str] = None
    scenario: Optional[str] = None
    attempts: int = 0


class TargetRecord(_SnapshotModel):
    id: str
    display_text: str
    level: int = Field(default=1, ge=1)
    url: Optional[str] = None
    scenario: Optional[str] = None
    status: TargetStatus = "pending"
    attempts: int = 0
    error: Optional[str] = None
    start_time: Optional[int] = None  # epoch ms
    end_time: Optional[int] = None
    duration: Optional[int] = None  # ms
    screenshot_ref: Optional[str] = None

    @classmethod
    def from_descriptor(cls, target: TargetDescriptor) -> "TargetRecord":
        return cls(
            id=target.id,
            display_text=target.text,
            level=target.level,
            url=target.url,
            scenario=target.scenario,
            attempts=target.attempts,
        )

    def to_descriptor(self) -> TargetDescriptor:
        return TargetDescriptor(
            id=self.id,
            text=self.display_text,
            level=self.level,
            url=self.url,
            scenario=self.scenario,
            attempts=self.attempts,
        )


class TargetResult(BaseModel):
    """Outcome handed to complete_target."""
    success: bool
    error: Optional[str] = None
    screenshot_ref: Optional[str] = None


class ErrorEntry(_SnapshotModel):
    target_id: str
    menu_text: str = ""
    message: Optional[str] = None
    timestamp: str
    attempt: int = 0


class SessionTimestamps(_SnapshotModel):
    started: str
    updated: str
    completed: Optional[str] = None
    resumed: Optional[str] = None


class TestSession(_SnapshotModel):
    __test__ = False
    session_id: str
    start_time: int  # epoch ms
    status: SessionStatus = "initializing"
    current_step: Optional[str] = None
    step_details: dict[str, Any] = Field(default_factory=dict)
    config: dict[str, Any] = Field(default_factory=dict)
    total_menus: int = 0
    completed_menus: int = 0
    failed_menus: int = 0
    skipped_menus: int = 0
    menus: dict[str, TargetRecord] = Field(default_factory=dict)
    errors: list[ErrorEntry] = Field(default_factory=list)
    timestamps: SessionTimestamps
    duration: Optional[int] = None
    summary: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    def to_snapshot(self) -> dict[str, Any]:
        """Serialize for disk. Targets are written as an ordered list of records."""
        data = self.model_dump(by_alias=True, mode="json", exclude={"menus"})
        data["menus"] = [r.model_dump(by_alias=True, mode="json") for r in self.menus.values()]
        return data

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "TestSession":
        """Rebuild a session from disk.

        Accepts ``menus`` either as the ordered record list written by
        ``to_snapshot`` or as an ``{id: record}`` object.
        """
        payload = dict(data)
        raw_menus = payload.pop("menus", None) or []
        if isinstance(raw_menus, dict):
            raw_menus = [{"id": key, **value} for key, value in raw_menus.items()]
        menus: dict[str, TargetRecord] = {}
        for raw in raw_menus:
            record = TargetRecord.model_validate(raw)
            menus[record.id] = record
        session = cls.model_validate(payload)
        session.menus = menus
        return session


class SessionInfo(BaseModel):
    """Listing entry for an unfinished session on disk."""
    session_id: str
    status: str
    started: str
    total_menus: int = 0
    completed_menus: int = 0
    target_url: str = ""
