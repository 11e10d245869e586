"""RequestDesk: listener song requests for radio automation.

Listeners submit requests, announcers moderate them (hold, release,
force, delete) and a polling processor places eligible requests into
the playout slots reported by the automation system.
"""

__version__ = "1.0.0"
