"""Electrical CBT core: weighted question selection, exam sessions, wrong-answer ledger."""
