"""
Copyright (c) 2024 Aiven Ltd
See LICENSE for details
"""
from .base import Kind, KubeClient, Manifest

__all__ = ["Kind", "KubeClient", "Manifest"]
