"""Compare the CTF type information of two ELF files or raw CTF blobs."""

__version__ = "0.1.0"
__all__ = ["__version__"]