#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Version of the wiz_lights package, also reported by "wiz-lights version"."""

__version__ = "0.1.0"
