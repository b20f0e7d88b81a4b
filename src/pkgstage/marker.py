"""
pkgstage.marker
===============

The failure marker is a file placed in the project root while staged code is
committed back into it, and removed once the commit completes. Finding it at
any other time means a commit died midway and the code base may be in an
indeterminate state. Nothing else may run until an operator has restored the
code base and cleared the marker.
"""

from __future__ import annotations

import traceback
from pathlib import Path

import msgspec
import msgspec.json
import msgspec.structs

from pkgstage.constants import MARKER_SCHEMA
from pkgstage.errors import FailureMarkerExists
from pkgstage.utils.fs_utils import write_bytes_atomic, write_bytes_exclusive
from pkgstage.utils.time_utils import now_iso

_NOT_AVAILABLE = "Not available"


class FailureMarkerRecord(msgspec.Struct, frozen=True):
    stage_id: str
    message: str
    cause_class: str | None = None
    cause_message: str = _NOT_AVAILABLE
    cause_trace: str = _NOT_AVAILABLE
    written_at: str | None = None
    schema: int = MARKER_SCHEMA

    @classmethod
    def for_exception(
        cls, stage_id: str, message: str, exc: BaseException | None = None
    ) -> FailureMarkerRecord:
        if exc is None:
            return cls(stage_id=stage_id, message=message, written_at=now_iso())
        return cls(
            stage_id=stage_id,
            message=message,
            cause_class=f"{type(exc).__module__}.{type(exc).__qualname__}",
            cause_message=str(exc) or _NOT_AVAILABLE,
            cause_trace="".join(traceback.format_exception(exc)),
            written_at=now_iso(),
        )


class FailureMarker:
    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def write(self, record: FailureMarkerRecord) -> None:
        """Write the marker. A marker that is already present is never replaced."""
        try:
            write_bytes_exclusive(self.path, msgspec.json.encode(record) + b"\n")
        except FileExistsError:
            raise FailureMarkerExists(
                f"Refusing to overwrite the existing failure marker at {self.path}."
            ) from None

    def annotate_cause(self, stage_id: str, exc: BaseException) -> FailureMarkerRecord:
        """
        Add the cause of a failed commit to the marker written for the same
        stage. The record keeps its original message and stage id.
        """
        current = self.read()
        if current is None or current.stage_id != stage_id:
            raise FailureMarkerExists(
                f"The failure marker at {self.path} does not belong to stage {stage_id}."
            )
        updated = FailureMarkerRecord.for_exception(stage_id, current.message, exc)
        updated = msgspec.structs.replace(updated, written_at=current.written_at)
        write_bytes_atomic(self.path, msgspec.json.encode(updated) + b"\n")
        return updated

    def read(self) -> FailureMarkerRecord | None:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return None
        try:
            return msgspec.json.decode(data, type=FailureMarkerRecord)
        except msgspec.DecodeError as e:
            raise FailureMarkerExists(
                f"Failure marker file exists at {self.path} but cannot be decoded."
            ) from e

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)

    def get_message(self, include_trace: bool = True) -> str | None:
        record = self.read()
        if record is None:
            return None
        message = record.message
        if record.cause_class:
            message += (
                f" Caused by {record.cause_class}, with this message: {record.cause_message}"
            )
            if include_trace:
                message += f"\nBacktrace:\n{record.cause_trace}"
        return message

    def assert_not_exists(self) -> None:
        message = self.get_message()
        if message is not None:
            raise FailureMarkerExists(message)
