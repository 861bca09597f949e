"""TrialProxy: credential-hiding proxy with per-user admission control."""
