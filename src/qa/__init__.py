"""Quality assurance for harmonised road networks."""

from .network_qa import NetworkQA

__all__ = ["NetworkQA"]
