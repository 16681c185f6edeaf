"""
hostmesh: personal machine provisioning and a shared SSH host registry.

Bootstrap a machine once. Register it in your dotfiles.
Every other machine can reach it by name.
"""

import os

__version__ = "0.1.0"
__author__ = "sudoflux"

HOSTMESH_HOME = os.environ.get("HOSTMESH_HOME", "~/.hostmesh")
