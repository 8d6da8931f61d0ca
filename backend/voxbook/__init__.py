"""Voxbook: background conversion jobs for text-to-speech and transcription."""
