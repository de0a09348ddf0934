"""
FotoPIM: batch normalization of product photographs.

Trims the background margin around product shots, resizes/pads them to the
configured size limits, re-encodes them as JPEG and gives them sequential
catalogue names.
"""

__version__ = "1.0.0"
