"""npmsentry: scan npm project trees for compromised packages and malware signatures."""

__version__ = "0.1.0"
