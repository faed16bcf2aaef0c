"""Process exit codes for the redohm CLI."""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
STORE_ERROR = 3
INVARIANT_DRIFT = 4
