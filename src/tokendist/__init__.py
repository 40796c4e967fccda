"""
tokendist - Fixed-supply token distribution with vesting, staged bonuses
and signature-based allocation redemption.

Main Components:
- DistributionEngine: resumable, budget-bounded distribution state machine
- RedemptionLedger: per-holder redemption/redirect bookkeeping
- AddressLinkProtocol: secp256k1 signature recovery over Bitcoin/Ethereum framings
- VestingAccount: cliff + installment based escrow
"""

__version__ = "0.1.0"
__author__ = "tokendist developers"

__all__ = ["__version__"]
