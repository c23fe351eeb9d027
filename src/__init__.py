"""callagents — multi-agent extraction pipeline for freight call transcripts."""

from callagents.version import __version__

__all__ = ["__version__"]
