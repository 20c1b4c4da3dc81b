"""Shared configuration, types and codecs."""
