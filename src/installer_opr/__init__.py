"""Operator engine for checkpointed section installation.

Runs the sections of an installation manifest in order: each section is
checkpointed, its package downloaded and extracted, and its install
script executed. The checkpoint ledger lets a run interrupted by a
reboot resume without re-running sections that already started.

Package name uses 'installer_opr' (short for operator) to match the
other operator packages and keep clear of generic module names.
"""
