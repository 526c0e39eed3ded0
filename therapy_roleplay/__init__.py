"""Therapy roleplay session orchestrator.

Drives an automated conversation between a simulated therapist and a
simulated patient: turn alternation, phase tracking, loop intervention,
response quality scoring and natural-completion detection.
"""
