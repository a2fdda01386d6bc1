"""Exit codes for zprof CLI commands.

Every command maps its failures onto one of these codes.
"""

# Success
SUCCESS = 0

# Errors
GENERAL_ERROR = 1
INVALID_ARGS = 2
HOME_NOT_INITIALIZED = 3
PROFILE_NOT_FOUND = 4
MANIFEST_INVALID = 5
PROFILE_EXISTS = 6
MUTATION_FAILED = 7
ACTIVE_PROFILE = 8
