"""Process exit codes shared by all syncstore commands."""

OK = 0
EXECUTION_FAILURE = 1
USAGE_ERROR = 2
DATABASE_ERROR = 3
NOT_FOUND = 4
