"""Backing stores the sync engine can synchronize through.

All variants satisfy :class:`pycrossbar.remote.base.RemoteStore`; the
concrete one is chosen once, by configuration.
"""
