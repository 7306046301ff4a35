"""
INDIGO identity constants.
"""

__codename__ = "INDIGO"
__version__ = "0.4.0"
__tagline__ = "Talk to your tracker. It listens."

BANNER = r"""
  ___ _  _ ___ ___ ___  ___
 |_ _| \| |   \_ _/ __|/ _ \
  | || .` | |) | | (_ | (_) |
 |___|_|\_|___/___\___|\___/
"""
