"""Enable sensitivity labels across a Microsoft 365 tenant.

The package connects to Microsoft Graph, SharePoint Online admin and the
Security & Compliance service, turns on label support in each of them when it
is not already on, and submits the label synchronization job.
"""

__version__ = "0.1.0"
