"""
allyfilter - Accessibility placeholders for LMS course content

Wraps links and images that point at course files in feedback/download
placeholders, and tags rich content with identifiers, both in server-side
text filtering and in a client-side pass over rendered pages.
"""

__version__ = "1.0.0"
__author__ = "Dale Chapman"
