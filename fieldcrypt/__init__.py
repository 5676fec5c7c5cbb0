"""
fieldcrypt - resumable encryption, decryption and key change of stored user addresses.
"""

__version__ = "1.0.0"
