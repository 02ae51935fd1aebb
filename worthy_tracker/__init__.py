"""Console entry points for the Worthy ledger."""
