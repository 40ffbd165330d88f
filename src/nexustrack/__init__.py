"""nexustrack - tracks Nexus Mods games, mods, collections and authors for Discord channels."""

__version__ = "1.4.0"
