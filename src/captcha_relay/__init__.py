"""captcha-relay: tiered captcha text recognition with provider failover.

Captures are cropped and normalized, looked up in a fingerprint cache, and
otherwise sent through an ordered list of recognition providers that fails
over on transient errors and recovers to the preferred tier after a cooldown.
"""

__version__ = "0.1.0"
