"""
FHE Detective - Confidential Witness Credibility Service
========================================================

A small service for:
1. Storing witness testimonies with confidential credibility scores
2. Flagging contradicting testimonies inside a criminal case
3. Revealing a single score after a wallet-signature challenge

The key/value backend, the wallet and the chain are external collaborators.
"""

__version__ = "1.0.0"
