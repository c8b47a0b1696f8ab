"""Director admin protocol."""

from poolmon.director.client import DirectorClient, DirectorSession, HostRecord

__all__ = ["DirectorClient", "DirectorSession", "HostRecord"]
