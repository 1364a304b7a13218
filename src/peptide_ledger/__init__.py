"""
Peptide Ledger - Dose ledger and vial inventory reconciliation.

Tracks self-administered peptide doses against reconstituted vials and keeps
the dose log, the vial counters, and the inventory list view consistent.
"""

__version__ = "0.1.0"
