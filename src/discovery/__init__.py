"""Discovery package for locating container log directories."""

from .probe import CandidateProbeDiscovery, Discovery, EnvironmentDiscovery, build_discovery

__all__ = ["CandidateProbeDiscovery", "Discovery", "EnvironmentDiscovery", "build_discovery"]
