"""Invoice line item to estimate line item matching."""
