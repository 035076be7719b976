"""SpotiFLAC REST API: Spotify track links to expiring FLAC downloads."""

__version__ = "1.0.0"
