"""
usvlink - USV mission model and MAVLink bridge contract
"""

__version__ = "0.1.0"
