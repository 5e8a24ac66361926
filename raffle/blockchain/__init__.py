"""Value ledger, VRF coordinator and deployment wiring."""
