"""
Exif AI

Generates image descriptions and tags with a pluggable AI provider and
writes them into the image's metadata fields, from the command line or
through an HTTP API.
"""

__version__ = "1.0.0"
__author__ = "Exif AI Team"
