"""
Source and derived row models.

SourceRecord mirrors a curtailment_records row (owned by ingestion, read-only
here); DerivedRecord mirrors a historical_bitcoin_calculations row.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceRecord(BaseModel):
    """
    One curtailment row for a settlement date, period and farm.

    Attributes:
        settlement_date: Settlement date
        settlement_period: Half-hour period (1-50, 46/50 on clock-change days)
        farm_id: BMU identifier of the wind farm
        lead_party_name: Operator of the farm, when known
        volume: Signed curtailed energy in MWh (negative for curtailment)
        payment: Payment for the curtailment
    """

    settlement_date: date
    settlement_period: int = Field(..., ge=1, le=50)
    farm_id: str = Field(..., min_length=1)
    lead_party_name: str | None = None
    volume: Decimal
    payment: Decimal = Decimal("0")

    class Config:
        json_schema_extra = {
            "example": {
                "settlement_date": "2025-03-21",
                "settlement_period": 17,
                "farm_id": "T_VKNGW-1",
                "lead_party_name": "Viking Energy Wind Farm LLP",
                "volume": "-42.5",
                "payment": "-3187.5",
            }
        }


class DerivedRecord(BaseModel):
    """
    One bitcoin calculation row.

    Natural key is (settlement_date, settlement_period, farm_id, miner_model).

    Attributes:
        settlement_date: Settlement date
        settlement_period: Half-hour period
        farm_id: BMU identifier of the wind farm
        miner_model: Derivation variant used
        bitcoin_mined: Bitcoin that the curtailed energy could have mined
        difficulty: Network difficulty used for the calculation
        calculated_at: When the row was produced
    """

    settlement_date: date
    settlement_period: int = Field(..., ge=1, le=50)
    farm_id: str = Field(..., min_length=1)
    miner_model: str = Field(..., min_length=1)
    bitcoin_mined: Decimal = Field(..., ge=0)
    difficulty: Decimal = Field(..., gt=0)
    calculated_at: datetime = Field(default_factory=_utcnow)

    @property
    def natural_key(self) -> tuple[date, int, str, str]:
        return (self.settlement_date, self.settlement_period, self.farm_id, self.miner_model)
