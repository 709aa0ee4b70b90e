"""Database backup automation: XtraBackup runs, archiving, shipping, retention."""

__version__ = "0.1.0"
