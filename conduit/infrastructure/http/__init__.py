"""HTTP failure classification."""
