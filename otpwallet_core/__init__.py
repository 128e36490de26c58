"""
otpwallet - authentication core of an OTP smart-contract wallet.

Key features:
- Authenticator-compatible OTP codes folded into per-leaf EOTPs
- Perfect Merkle trees over every (time slot, operation slot) of a wallet's life
- Second-factor, randomness and multi-code inner trees
- Auth-path selection and the commit/reveal hash protocol
- Background builds with generation tokens, SQLite tree persistence
"""

__version__ = "0.1.0"
__all__ = [
    "otp",
    "eotp",
    "merkle",
    "proof",
    "operations",
    "commit_reveal",
    "security",
    "worker",
    "storage",
    "config",
]
