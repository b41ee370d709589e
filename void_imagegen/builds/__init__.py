"""Build orchestration module.

This module handles:
- Running external commands for pipeline stages
- Invoking the guest-tooling installer
- Archiving the target root and naming the artifact
- Sequencing every stage into one build
"""

# Submodules are imported directly (void_imagegen.builds.service, etc.);
# the target package depends on builds.runner, so nothing is re-exported here.
