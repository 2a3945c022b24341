"""HTTP service exposing the loan engine."""
