"""
openslots - open calendar time from CalDAV availability and booked calendars.
"""

__version__ = "0.1.0"
