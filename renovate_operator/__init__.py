"""RenovateJob resources, job manifests, project status tracking and Renovate log parsing."""

__version__ = "0.1.0"