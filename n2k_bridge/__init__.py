"""Signal K to NMEA 2000 conversion bridge."""

__version__ = "0.1.0"
