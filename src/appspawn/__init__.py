"""appspawn: spawn manager for application worker processes.

A long-lived manager process reads spawn requests from a pre-opened duplex
channel, launches workers with the requested identity and environment, and
hands each worker's socket address and stderr descriptor back to the caller.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
