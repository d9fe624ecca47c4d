"""Processing module for uploaded videos.

Probes a source, plans an HLS rendition ladder, encodes each rendition with
FFmpeg, publishes the derived artifacts and reconciles the job outcome.
"""
