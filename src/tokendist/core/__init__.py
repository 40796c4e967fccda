"""
tokendist core

Contracts, ledgers and the distribution state machine, plus the host
runtime (gas metering, atomic execution) and checkpoint persistence.
"""
