"""HTTP boundary for SiteCost."""
