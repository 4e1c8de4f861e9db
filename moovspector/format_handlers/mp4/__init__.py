# moovspector/format_handlers/mp4/__init__.py
# !/usr/bin/env python3

from .mp4 import Mp4Parser
