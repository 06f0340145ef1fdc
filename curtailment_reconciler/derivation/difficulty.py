"""
Network difficulty lookup.

DifficultyTable holds the observed difficulty per date. It is built once per
run with an explicit load() and is read-only afterwards, so worker threads
share it without locking.
"""

import bisect
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Literal, Protocol

import yaml
from pydantic import BaseModel

from curtailment_reconciler.core.exceptions import DerivationInputError
from curtailment_reconciler.observability.logger import get_logger
from curtailment_reconciler.observability.metrics import difficulty_fallbacks_total, increment_counter

logger = get_logger()

DEFAULT_DIFFICULTY = 108105433845147


class DifficultySource(Protocol):
    def load_difficulties(self) -> dict[date, Decimal]:
        ...


class DifficultyResolution(BaseModel):
    """
    Difficulty chosen for a settlement date.

    Attributes:
        value: Difficulty to use
        source: "exact", "carried_forward" or "default"
        observed_on: Date of the observation used (None for the default)
    """

    value: Decimal
    source: Literal["exact", "carried_forward", "default"]
    observed_on: date | None = None

    @property
    def is_fallback(self) -> bool:
        return self.source != "exact"

    def describe(self, settlement_date: date) -> str:
        if self.source == "carried_forward":
            return f"no difficulty for {settlement_date}, carried forward {self.value} from {self.observed_on}"
        if self.source == "default":
            return f"no difficulty for {settlement_date} or earlier, used default {self.value}"
        return f"difficulty {self.value} observed on {settlement_date}"


class StaticDifficultySource:
    """
    Difficulty observations from a mapping or a YAML file.

    Expected YAML format:
    ```yaml
    difficulties:
      2025-03-01: 112149504190349
      2025-03-15: 113757508810854
    ```
    """

    def __init__(self, observations: dict[date | str, int | str | Decimal] | None = None):
        self._observations = observations or {}

    @classmethod
    def from_yaml(cls, path: str | Path) -> "StaticDifficultySource":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Difficulty file not found: {path}")
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        observations = data.get("difficulties", data) if isinstance(data, dict) else None
        if not isinstance(observations, dict):
            raise DerivationInputError(f"{path} must map dates to difficulties")
        return cls(observations)

    def load_difficulties(self) -> dict[date, Decimal]:
        parsed: dict[date, Decimal] = {}
        for day, value in self._observations.items():
            try:
                key = day if isinstance(day, date) else date.fromisoformat(str(day))
                difficulty = Decimal(str(value))
            except (ValueError, InvalidOperation) as e:
                raise DerivationInputError(f"Invalid difficulty entry {day!r}: {value!r}") from e
            if difficulty <= 0:
                raise DerivationInputError(f"Difficulty for {key} must be positive, got {difficulty}")
            parsed[key] = difficulty
        return parsed


class DifficultyTable:
    """
    Resolves the difficulty for a settlement date.

    Resolution order: the observation for that exact date, else the most
    recent earlier observation, else the default difficulty. Anything other
    than an exact hit is a fallback; fallbacks are logged and counted.

    Usage:
        table = DifficultyTable(StaticDifficultySource({"2025-03-01": 112149504190349}))
        table.load()
        resolution = table.resolve(date(2025, 3, 21))
    """

    def __init__(
        self,
        source: DifficultySource | None = None,
        default: int | Decimal = DEFAULT_DIFFICULTY,
        retry_policy=None,
    ):
        """
        Args:
            source: Where observations come from (None: default only)
            default: Difficulty used when no observation applies
            retry_policy: Optional RetryPolicy wrapped around source loading
        """
        self.source = source
        self.default = Decimal(default)
        self.retry_policy = retry_policy
        self._dates: list[date] = []
        self._values: list[Decimal] = []
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __len__(self) -> int:
        return len(self._dates)

    def load(self, strict: bool = False) -> "DifficultyTable":
        """
        Load observations from the source.

        Args:
            strict: Raise when the source fails instead of continuing with
                no observations (every date then resolves to the default)

        Raises:
            DerivationInputError: If strict and the source cannot be read
        """
        observations: dict[date, Decimal] = {}
        if self.source is not None:
            try:
                if self.retry_policy is not None:
                    observations = self.retry_policy.call("load_difficulties", self.source.load_difficulties)
                else:
                    observations = self.source.load_difficulties()
            except Exception as e:
                if strict:
                    raise DerivationInputError(f"Could not load network difficulty: {e}") from e
                logger.warning(
                    "Network difficulty unavailable, all dates will use the default",
                    extra={"error": str(e), "default_difficulty": str(self.default)},
                )
                observations = {}

        ordered = sorted(observations.items())
        self._dates = [d for d, _ in ordered]
        self._values = [v for _, v in ordered]
        self._loaded = True
        logger.info("Loaded network difficulty", extra={"observations": len(self._dates)})
        return self

    def resolve(self, settlement_date: date) -> DifficultyResolution:
        """
        Difficulty for a settlement date.

        Raises:
            RuntimeError: If load() has not been called
        """
        if not self._loaded:
            raise RuntimeError("DifficultyTable is not loaded. Call load() first.")

        idx = bisect.bisect_right(self._dates, settlement_date)
        if idx > 0 and self._dates[idx - 1] == settlement_date:
            return DifficultyResolution(value=self._values[idx - 1], source="exact", observed_on=settlement_date)

        if idx > 0:
            resolution = DifficultyResolution(
                value=self._values[idx - 1], source="carried_forward", observed_on=self._dates[idx - 1]
            )
        else:
            resolution = DifficultyResolution(value=self.default, source="default")

        increment_counter(difficulty_fallbacks_total, 1, source=resolution.source)
        logger.warning(
            "Using fallback network difficulty",
            extra={
                "settlement_date": settlement_date.isoformat(),
                "difficulty": str(resolution.value),
                "difficulty_source": resolution.source,
            },
        )
        return resolution
