"""toolshed — catalogue and operate the CLI tools on this machine."""

__version__ = "0.3.0"
