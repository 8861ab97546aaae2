"""Payment rail adapters. Each one translates rail signals into ledger calls."""
