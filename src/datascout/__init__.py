"""
datascout - Data surface discovery for unknown web properties

Crawls a site over HTTP, observes its runtime network traffic in a headless
browser, and profiles every JSON array it finds without a prior schema.
"""

__version__ = "1.0.0"
__author__ = "datascout Team"
__status__ = "Development"
