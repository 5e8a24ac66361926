"""Raffle state machine, notifications and automation loops."""
