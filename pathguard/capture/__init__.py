"""
Capture Module.

Responsibilities:
- Replay of recorded depth sessions (.npz per frame)
- Recording of frames for offline tuning
"""

from .depth_recording import DepthRecordingSource, RecordedFrame, save_recorded_frame
