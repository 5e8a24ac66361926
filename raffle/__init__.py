"""
VRF Raffle
Recurring fixed-fee raffle drawn with randomness from a VRF coordinator
"""

__version__ = "1.0.0"
