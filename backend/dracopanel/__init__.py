"""DracoPanel: administrative panel for hosting instances, users, plans and API keys."""

__version__ = "0.1.0"
