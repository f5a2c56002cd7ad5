"""Building blocks of a QUIC transport: range sets, congestion control, rate metering, loss recovery and default settings."""

__version__ = "0.1.0"