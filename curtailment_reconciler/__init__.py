"""
Curtailment reconciliation engine.

Keeps historical_bitcoin_calculations consistent with curtailment_records by
scanning partitions, reprocessing the missing or incomplete ones and
verifying completion afterward.
"""

__version__ = "0.1.0"
