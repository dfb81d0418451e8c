#!/usr/bin/env python3
"""
unpin - iOS SSL pinning bypass over Frida
"""

__version__ = "0.1.0"
