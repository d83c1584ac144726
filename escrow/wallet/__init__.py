"""
Wallet Sessions
===============

One interface, two key-custody modes:

- LocalWalletSession: seed held here, custody daemon does the bookkeeping
- DelegatedWalletSession: an external signer holds the keys
"""

from .base import WalletSession, session_state_from_dict
from .local import LocalWalletSession
from .delegated import DelegatedWalletSession

__all__ = [
    'WalletSession',
    'session_state_from_dict',
    'LocalWalletSession',
    'DelegatedWalletSession',
]
