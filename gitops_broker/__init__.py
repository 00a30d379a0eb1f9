"""
GitOps Service Broker - git-backed state store

Persists Open Service Broker instance records as YAML files in a git
repository that an external pipeline reconciles.
"""

__version__ = "0.1.0"
__author__ = "gitops-broker"
