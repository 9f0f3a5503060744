"""ThreadKeeper — save, organize and export social media threads."""

__version__ = "0.1.0"
