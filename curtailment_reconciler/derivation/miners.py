"""
Reference bitcoin derivation.

Converts curtailed energy for one settlement period into the bitcoin a fleet
of a given miner model could have mined with it. Pure functions only; the
difficulty is supplied by the caller.
"""

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

SETTLEMENT_PERIOD_HOURS = Decimal("0.5")
SECONDS_PER_BLOCK = Decimal(600)
# 30-minute settlement period / 10-minute blocks
BLOCKS_PER_SETTLEMENT_PERIOD = Decimal(3)
BTC_QUANTUM = Decimal("0.00000001")

# (first day of the era, reward per block)
HALVINGS = [
    (date(2024, 4, 20), Decimal("3.125")),
    (date(2020, 5, 11), Decimal("6.25")),
]
INITIAL_ERA_REWARD = Decimal("12.5")


@dataclass(frozen=True)
class MinerProfile:
    """Hashrate in TH/s and power draw in watts of one miner model."""

    name: str
    hashrate_th: Decimal
    power_watts: Decimal

    @property
    def power_kw(self) -> Decimal:
        return self.power_watts / Decimal(1000)


MINER_PROFILES: dict[str, MinerProfile] = {
    "S19J_PRO": MinerProfile("S19J_PRO", Decimal(100), Decimal(3050)),
    "S9": MinerProfile("S9", Decimal(14), Decimal(1350)),
    "M20S": MinerProfile("M20S", Decimal(68), Decimal(3360)),
}


def get_miner_profile(miner_model: str) -> MinerProfile:
    """
    Look up a miner model.

    Raises:
        ValueError: If the model is not known
    """
    try:
        return MINER_PROFILES[miner_model.upper()]
    except KeyError:
        raise ValueError(
            f"Unknown miner model: {miner_model!r}. Known models: {', '.join(sorted(MINER_PROFILES))}"
        ) from None


def block_reward_for(settlement_date: date) -> Decimal:
    for era_start, reward in HALVINGS:
        if settlement_date >= era_start:
            return reward
    return INITIAL_ERA_REWARD


def network_hashrate_th(difficulty: Decimal | int) -> Decimal:
    """Network hashrate in TH/s implied by a difficulty (difficulty * 2^32 / 600 s)."""
    return Decimal(difficulty) * Decimal(2 ** 32) / SECONDS_PER_BLOCK / Decimal(10 ** 12)


def calculate_bitcoin(
    energy_mwh: Decimal | float | int,
    miner_model: str,
    difficulty: Decimal | int,
    settlement_date: date,
) -> Decimal:
    """
    Bitcoin minable with the curtailed energy of one settlement period.

    The energy runs as many whole miners as it can power for 30 minutes; their
    share of the network hashrate earns that share of the period's three
    block rewards.

    Args:
        energy_mwh: Curtailed energy in MWh (absolute value is used)
        miner_model: Miner model name, e.g. "S19J_PRO"
        difficulty: Network difficulty
        settlement_date: Settlement date; selects the block reward era

    Returns:
        Bitcoin amount rounded to 8 decimal places

    Raises:
        ValueError: For an unknown miner model or a non-positive difficulty

    Examples:
        >>> calculate_bitcoin(Decimal("0"), "S19J_PRO", 108105433845147, date(2025, 3, 21))
        Decimal('0E-8')
    """
    profile = get_miner_profile(miner_model)
    difficulty = Decimal(difficulty)
    if difficulty <= 0:
        raise ValueError(f"difficulty must be positive, got {difficulty}")

    energy_kwh = abs(Decimal(str(energy_mwh))) * Decimal(1000)
    kwh_per_miner = profile.power_kw * SETTLEMENT_PERIOD_HOURS
    miners = (energy_kwh / kwh_per_miner).to_integral_value(rounding=ROUND_FLOOR)

    fleet_hashrate_th = miners * profile.hashrate_th
    share = fleet_hashrate_th / network_hashrate_th(difficulty)
    reward = share * block_reward_for(settlement_date) * BLOCKS_PER_SETTLEMENT_PERIOD
    return reward.quantize(BTC_QUANTUM, rounding=ROUND_HALF_UP)
