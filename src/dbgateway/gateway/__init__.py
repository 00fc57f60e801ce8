"""Script-execution gateway for dbgateway.

An HTTPS server whose endpoints each run a fixed script from the server's
working directory, bounded by a deadline and the caller's connection,
and relay the script's output as the response.
"""
