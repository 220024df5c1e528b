"""
Robot Remote - Real-time remote-control client for a networked robot.

This package keeps a persistent authenticated WebSocket command channel to
the robot, turns key/touch input into a sustained stream of movement
commands, and ingests the robot's MJPEG camera feed over HTTP.

The UI shell that renders state and frames is not part of this package.
"""

__version__ = "1.0.0"
