"""Synchronization layer.

Bridges the local :class:`pycrossbar.state.store.EntryStore` and a
:class:`pycrossbar.remote.base.RemoteStore` so every client converges on
the same entries.
"""
