"""panelkit - crash recovery and registry trust management for the panel daemon."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("panelkit")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
