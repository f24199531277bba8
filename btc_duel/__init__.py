"""
BTC Duel
========

A short-lived prediction game: the user calls BTC UP or DOWN, an
algorithmic opponent makes its own call, and after a fixed delay
the oracle settles both against the observed price move.

Configure .env before running (see .env.example).
"""

__version__ = "1.0.0"
__author__ = "BTC Duel"
