"""HTTP interface for the Worthy ledger."""
