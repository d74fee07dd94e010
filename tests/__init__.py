"""Test package for Juliette Psicose.

Core tests drive the countdown, distraction generator, trials and challenges
with a fake clock and a ``TimerQueue`` so no real time passes. The pygame
smoke tests run headlessly using the SDL dummy video driver. To run these
tests, execute ``pytest`` from the project root.
"""
