"""TrialProxy application package."""
