"""wprecords: a Composer repository for WordPress plugins and themes."""

__version__ = "0.1.0"
