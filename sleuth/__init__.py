"""Sleuth: oracle-driven puzzle solving.

A run repeatedly asks a language model which tool to use next, executes that tool
against an external service, folds the result into a per-run knowledge state, and
stops when a verifier reply carries the success sentinel or the step budget runs out.
"""
