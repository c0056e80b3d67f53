"""End-to-end test harness for the tag-based EC2 stop/start scheduler."""

__version__ = "0.1.0"
