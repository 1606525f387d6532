"""Bulk Hosting Provisioner

Drives hosting-panel, DNS and SSH collaborators through bulk, per-domain
workflows and exposes pollable job status and logs.
"""

__version__ = "0.1.0"
