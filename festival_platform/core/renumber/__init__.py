"""Renumbering engine.

Edits to a sibling set are planned up front (plan.py), checked for collisions,
and only then applied through a staged, journaled rename (engine.py), so an
interrupted run can always be resumed or rolled back.
"""
