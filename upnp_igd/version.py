# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Package upnp_igd discovers UPnP Internet Gateway Devices and manages their port mappings
"""

# The following line is automatically updated with "semantic-release version"
__version__ =  "0.16.1"


__all__ = [ '__version__' ]
