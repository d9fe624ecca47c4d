"""Asynchronous video processing pipeline.

Turns an uploaded source video into a published set of HLS renditions, a
master playlist and a thumbnail, and reconciles the outcome into the catalog.
"""

__version__ = "0.1.0"
