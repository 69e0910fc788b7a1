"""
Ownership Kernel - fractional ownership ledger and revenue distribution.

An append-only ledger of asset ownership grants with:
- Per-asset serialisation of grants and distributions
- Integer basis-point ownership, never above 100% per asset
- Exactly-once, idempotent revenue distribution runs
- Conservation of every minor unit through deterministic rounding
"""

__version__ = "0.1.0"
