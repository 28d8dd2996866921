"""Letter rounds: a group takes turns planning one activity per letter A-Z."""

__version__ = "1.0.0"
