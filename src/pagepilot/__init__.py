"""pagepilot: match user-defined AI tasks to web pages and execute them."""

__version__ = "0.1.0"
