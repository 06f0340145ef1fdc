"""
Derivation collaborator: miner profiles, the bitcoin formula and difficulty lookup.
"""

from .difficulty import (
    DEFAULT_DIFFICULTY,
    DifficultyResolution,
    DifficultyTable,
    StaticDifficultySource,
)
from .miners import MINER_PROFILES, MinerProfile, block_reward_for, calculate_bitcoin, get_miner_profile

__all__ = [
    "DEFAULT_DIFFICULTY",
    "DifficultyResolution",
    "DifficultyTable",
    "StaticDifficultySource",
    "MINER_PROFILES",
    "MinerProfile",
    "block_reward_for",
    "calculate_bitcoin",
    "get_miner_profile",
]
