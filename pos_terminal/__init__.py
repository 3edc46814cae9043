"""
POS terminal service.

Drives in-person card charges on a smart reader: intent creation,
reader hand-off, status polling and recovery from network loss.
"""

__version__ = "1.0.0"
