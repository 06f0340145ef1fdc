"""
ReconcileScope model describing which dates a scan or run covers.
"""

from datetime import date, timedelta
from typing import Iterator, Literal

from pydantic import BaseModel, model_validator


class ReconcileScope(BaseModel):
    """
    Dates covered by a scan, run or verification.

    Attributes:
        kind: "date" (single day), "range" (inclusive) or "all" (every date
            with any curtailment record)
        start: First date (date and range scopes)
        end: Last date, inclusive (date and range scopes)
    """

    kind: Literal["date", "range", "all"]
    start: date | None = None
    end: date | None = None

    @model_validator(mode="after")
    def check_bounds(self) -> "ReconcileScope":
        if self.kind == "all":
            if self.start is not None or self.end is not None:
                raise ValueError("scope 'all' does not take start/end dates")
            return self
        if self.start is None or self.end is None:
            raise ValueError(f"scope '{self.kind}' requires start and end dates")
        if self.kind == "date" and self.start != self.end:
            raise ValueError("scope 'date' requires start == end")
        if self.start > self.end:
            raise ValueError(f"start {self.start} is after end {self.end}")
        return self

    @classmethod
    def single(cls, day: date) -> "ReconcileScope":
        return cls(kind="date", start=day, end=day)

    @classmethod
    def between(cls, start: date, end: date) -> "ReconcileScope":
        return cls(kind="range", start=start, end=end)

    @classmethod
    def everything(cls) -> "ReconcileScope":
        return cls(kind="all")

    @property
    def is_bounded(self) -> bool:
        return self.kind != "all"

    def dates(self) -> Iterator[date]:
        """
        Iterate calendar dates in a bounded scope.

        Raises:
            ValueError: For the unbounded "all" scope
        """
        if not self.is_bounded:
            raise ValueError("scope 'all' has no fixed date list")
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def describe(self) -> str:
        if self.kind == "all":
            return "all outstanding dates"
        if self.kind == "date":
            return self.start.isoformat()
        return f"{self.start.isoformat()}..{self.end.isoformat()}"
