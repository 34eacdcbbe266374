"""Version information for spendmap."""

VERSION = "0.3.0"
