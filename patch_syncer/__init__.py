"""
Patch Syncer - mirror a monorepo subdirectory into its own repository.

This package exports the commits touching one subdirectory of a monorepo as
patches, replays them onto a branch of an independent open-source
repository and publishes that branch as a pull request. Pull requests made
on the open-source side are imported back the same way.
"""

__version__ = "1.0.0"
