# moovspector/format_handlers/__init__.py
# !/usr/bin/env python3

"""
This package contains modules for parsing media container formats.
Each subpackage (e.g., mp4) handles the parsing logic for one format.
"""
