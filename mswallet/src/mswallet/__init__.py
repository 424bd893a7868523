"""
mswallet - Threshold multisig wallet

Wallet registry, PSBT coordination, signer and blockchain backends.
"""

__version__ = "0.3.0"
