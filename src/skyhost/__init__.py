"""SkyHost - guider image host for mobile observatory clients."""

__version__ = "0.1.0"
