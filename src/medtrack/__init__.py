"""MedTrack: medication adherence tracking core."""

__version__ = "0.1.0"
